"""
In-Memory Credential Store

Dict-backed store for tests and local tooling. Enforces the same uniqueness
rules as the database schema.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from app.models.enums import OTPPurpose
from app.models.login_attempt import LoginAttempt
from app.models.otp_code import OTPCode
from app.models.password_reset_flow import PasswordResetFlow
from app.models.registration_flow import RegistrationFlow
from app.models.revoked_token import RevokedToken
from app.models.security_event import SecurityEvent
from app.models.session import AuthSession
from app.models.user import User
from app.store.base import CredentialStore, DuplicateRecordError


class InMemoryCredentialStore(CredentialStore):
    """
    Credential store holding records in plain dicts.

    Not shared between processes; each instance is an isolated database.
    """

    def __init__(self):
        self.users: Dict[uuid.UUID, User] = {}
        self.otps: Dict[uuid.UUID, OTPCode] = {}
        self.registration_flows: Dict[str, RegistrationFlow] = {}
        self.reset_flows: Dict[str, PasswordResetFlow] = {}
        self.sessions: Dict[uuid.UUID, AuthSession] = {}
        self.login_attempts: Dict[str, LoginAttempt] = {}
        self.revoked_tokens: Dict[str, RevokedToken] = {}
        self.security_events: List[SecurityEvent] = []

    # ============== Users ==============

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        for user in self.users.values():
            if user.email.lower() == email:
                return user
        return None

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self.users.get(user_id)

    async def create_user(self, user: User) -> User:
        if await self.get_user_by_email(user.email) is not None:
            raise DuplicateRecordError(f"User {user.email} already exists")
        self.users[user.id] = user
        return user

    async def save_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    # ============== OTP codes ==============

    def _otps_for(self, email: str, purpose: OTPPurpose) -> List[OTPCode]:
        return [
            otp for otp in self.otps.values()
            if otp.email == email and otp.purpose == purpose
        ]

    async def get_latest_otp(
        self, email: str, purpose: OTPPurpose, include_used: bool = False
    ) -> Optional[OTPCode]:
        candidates = [
            otp for otp in self._otps_for(email, purpose)
            if include_used or not otp.is_used
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda otp: otp.created_at)

    async def create_otp(self, otp: OTPCode) -> OTPCode:
        if not otp.is_used and any(
            not existing.is_used
            for existing in self._otps_for(otp.email, otp.purpose)
        ):
            raise DuplicateRecordError(
                f"An unused OTP already exists for {otp.email} ({otp.purpose.value})"
            )
        self.otps[otp.id] = otp
        return otp

    async def save_otp(self, otp: OTPCode) -> OTPCode:
        self.otps[otp.id] = otp
        return otp

    async def invalidate_otps(
        self, email: str, purpose: OTPPurpose, now: datetime
    ) -> int:
        count = 0
        for otp in self._otps_for(email, purpose):
            if not otp.is_used:
                otp.is_used = True
                otp.used_at = now
                count += 1
        return count

    async def expire_otps(self, now: datetime) -> int:
        count = 0
        for otp in self.otps.values():
            if not otp.is_used and otp.expires_at < now:
                otp.is_used = True
                otp.used_at = now
                count += 1
        return count

    async def delete_otps_created_before(self, cutoff: datetime) -> int:
        stale = [key for key, otp in self.otps.items() if otp.created_at < cutoff]
        for key in stale:
            del self.otps[key]
        return len(stale)

    # ============== Registration flows ==============

    async def get_registration_flow(self, email: str) -> Optional[RegistrationFlow]:
        return self.registration_flows.get(email)

    async def save_registration_flow(self, flow: RegistrationFlow) -> RegistrationFlow:
        existing = self.registration_flows.get(flow.email)
        if existing is not None and existing.id != flow.id:
            raise DuplicateRecordError(f"Registration flow for {flow.email} exists")
        self.registration_flows[flow.email] = flow
        return flow

    async def delete_registration_flow(self, email: str) -> bool:
        return self.registration_flows.pop(email, None) is not None

    async def delete_expired_registration_flows(self, now: datetime) -> int:
        stale = [
            email for email, flow in self.registration_flows.items()
            if flow.expires_at < now
        ]
        for email in stale:
            del self.registration_flows[email]
        return len(stale)

    # ============== Password reset flows ==============

    async def get_reset_flow(self, email: str) -> Optional[PasswordResetFlow]:
        return self.reset_flows.get(email)

    async def save_reset_flow(self, flow: PasswordResetFlow) -> PasswordResetFlow:
        existing = self.reset_flows.get(flow.email)
        if existing is not None and existing.id != flow.id:
            raise DuplicateRecordError(f"Password reset flow for {flow.email} exists")
        self.reset_flows[flow.email] = flow
        return flow

    async def delete_reset_flow(self, email: str) -> bool:
        return self.reset_flows.pop(email, None) is not None

    async def delete_stale_reset_flows(
        self, now: datetime, inactive_before: datetime
    ) -> int:
        stale = [
            email for email, flow in self.reset_flows.items()
            if flow.expires_at < now
            or (not flow.is_active and flow.created_at < inactive_before)
        ]
        for email in stale:
            del self.reset_flows[email]
        return len(stale)

    # ============== Sessions ==============

    async def create_session(self, session: AuthSession) -> AuthSession:
        if session.id in self.sessions:
            raise DuplicateRecordError(f"Session {session.id} exists")
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: uuid.UUID) -> Optional[AuthSession]:
        return self.sessions.get(session_id)

    async def save_session(self, session: AuthSession) -> AuthSession:
        self.sessions[session.id] = session
        return session

    async def list_active_sessions(
        self, user_id: uuid.UUID, now: datetime
    ) -> List[AuthSession]:
        active = [
            session for session in self.sessions.values()
            if session.user_id == user_id
            and session.is_active
            and session.expires_at > now
        ]
        return sorted(active, key=lambda s: s.last_accessed_at, reverse=True)

    async def deactivate_sessions(self, user_id: uuid.UUID) -> int:
        count = 0
        for session in self.sessions.values():
            if session.user_id == user_id and session.is_active:
                session.is_active = False
                count += 1
        return count

    # ============== Login attempts ==============

    async def get_login_attempt(self, email: str) -> Optional[LoginAttempt]:
        return self.login_attempts.get(email)

    async def record_failed_login(self, email: str, now: datetime) -> LoginAttempt:
        attempt = self.login_attempts.get(email)
        if attempt is None:
            attempt = LoginAttempt(email=email, count=1, last_attempt=now)
            self.login_attempts[email] = attempt
        else:
            attempt.count += 1
            attempt.last_attempt = now
        return attempt

    async def save_login_attempt(self, attempt: LoginAttempt) -> LoginAttempt:
        self.login_attempts[attempt.email] = attempt
        return attempt

    async def clear_login_attempts(self, email: str) -> None:
        self.login_attempts.pop(email, None)

    # ============== Revoked tokens ==============

    async def revoke_token(self, record: RevokedToken) -> None:
        self.revoked_tokens.setdefault(record.jti, record)

    async def is_token_revoked(self, jti: str) -> bool:
        return jti in self.revoked_tokens

    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        stale = [
            jti for jti, record in self.revoked_tokens.items()
            if record.expires_at < now
        ]
        for jti in stale:
            del self.revoked_tokens[jti]
        return len(stale)

    # ============== Security events ==============

    async def add_security_event(self, event: SecurityEvent) -> None:
        self.security_events.append(event)
