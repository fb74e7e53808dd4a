"""
Credential Store Interface

Keyed persistence for users, OTP codes, flows, sessions, login attempts,
revoked tokens and security events. Services depend only on this interface.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from app.models.enums import OTPPurpose
from app.models.login_attempt import LoginAttempt
from app.models.otp_code import OTPCode
from app.models.password_reset_flow import PasswordResetFlow
from app.models.registration_flow import RegistrationFlow
from app.models.revoked_token import RevokedToken
from app.models.security_event import SecurityEvent
from app.models.session import AuthSession
from app.models.user import User


class DuplicateRecordError(Exception):
    """A uniqueness constraint was violated (e.g. a second unused OTP)."""


class CredentialStore(ABC):
    """Abstract credential store."""

    # ============== Users ==============

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        ...

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Insert a user. Raises DuplicateRecordError if the email is taken."""

    @abstractmethod
    async def save_user(self, user: User) -> User:
        ...

    # ============== OTP codes ==============

    @abstractmethod
    async def get_latest_otp(
        self, email: str, purpose: OTPPurpose, include_used: bool = False
    ) -> Optional[OTPCode]:
        """Most recently created code for the pair, unused only by default."""

    @abstractmethod
    async def create_otp(self, otp: OTPCode) -> OTPCode:
        """Insert a code. Raises DuplicateRecordError if an unused one exists."""

    @abstractmethod
    async def save_otp(self, otp: OTPCode) -> OTPCode:
        ...

    @abstractmethod
    async def invalidate_otps(
        self, email: str, purpose: OTPPurpose, now: datetime
    ) -> int:
        """Mark every unused code for the pair as used. Returns the count."""

    @abstractmethod
    async def expire_otps(self, now: datetime) -> int:
        """Mark every unused code past its expiry as used."""

    @abstractmethod
    async def delete_otps_created_before(self, cutoff: datetime) -> int:
        ...

    # ============== Registration flows ==============

    @abstractmethod
    async def get_registration_flow(self, email: str) -> Optional[RegistrationFlow]:
        ...

    @abstractmethod
    async def save_registration_flow(self, flow: RegistrationFlow) -> RegistrationFlow:
        ...

    @abstractmethod
    async def delete_registration_flow(self, email: str) -> bool:
        ...

    @abstractmethod
    async def delete_expired_registration_flows(self, now: datetime) -> int:
        ...

    # ============== Password reset flows ==============

    @abstractmethod
    async def get_reset_flow(self, email: str) -> Optional[PasswordResetFlow]:
        ...

    @abstractmethod
    async def save_reset_flow(self, flow: PasswordResetFlow) -> PasswordResetFlow:
        ...

    @abstractmethod
    async def delete_reset_flow(self, email: str) -> bool:
        ...

    @abstractmethod
    async def delete_stale_reset_flows(
        self, now: datetime, inactive_before: datetime
    ) -> int:
        """Delete expired flows and inactive flows created before the cutoff."""

    # ============== Sessions ==============

    @abstractmethod
    async def create_session(self, session: AuthSession) -> AuthSession:
        ...

    @abstractmethod
    async def get_session(self, session_id: uuid.UUID) -> Optional[AuthSession]:
        ...

    @abstractmethod
    async def save_session(self, session: AuthSession) -> AuthSession:
        ...

    @abstractmethod
    async def list_active_sessions(
        self, user_id: uuid.UUID, now: datetime
    ) -> List[AuthSession]:
        ...

    @abstractmethod
    async def deactivate_sessions(self, user_id: uuid.UUID) -> int:
        """Deactivate every active session of the user. Returns the count."""

    # ============== Login attempts ==============

    @abstractmethod
    async def get_login_attempt(self, email: str) -> Optional[LoginAttempt]:
        ...

    @abstractmethod
    async def record_failed_login(self, email: str, now: datetime) -> LoginAttempt:
        """Atomically increment the failure counter, creating it at 1."""

    @abstractmethod
    async def save_login_attempt(self, attempt: LoginAttempt) -> LoginAttempt:
        ...

    @abstractmethod
    async def clear_login_attempts(self, email: str) -> None:
        ...

    # ============== Revoked tokens ==============

    @abstractmethod
    async def revoke_token(self, record: RevokedToken) -> None:
        """Idempotent insert into the deny-list."""

    @abstractmethod
    async def is_token_revoked(self, jti: str) -> bool:
        ...

    @abstractmethod
    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        ...

    # ============== Security events ==============

    @abstractmethod
    async def add_security_event(self, event: SecurityEvent) -> None:
        ...
