"""
SQLAlchemy Credential Store

PostgreSQL-backed store over an ``AsyncSession``. Every write commits on its
own so that a flow step never leaves half-applied state behind.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, TypeVar

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

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

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlAlchemyCredentialStore(CredentialStore):
    """Credential store backed by async SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _persist(self, obj: T) -> T:
        self._session.add(obj)
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise DuplicateRecordError(str(e.orig)) from e
        return obj

    async def _execute_count(self, stmt) -> int:
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount or 0

    # ============== Users ==============

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self._session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return await self._session.get(User, user_id)

    async def create_user(self, user: User) -> User:
        return await self._persist(user)

    async def save_user(self, user: User) -> User:
        return await self._persist(user)

    # ============== OTP codes ==============

    async def get_latest_otp(
        self, email: str, purpose: OTPPurpose, include_used: bool = False
    ) -> Optional[OTPCode]:
        query = select(OTPCode).where(
            OTPCode.email == email,
            OTPCode.purpose == purpose,
        )
        if not include_used:
            query = query.where(OTPCode.is_used.is_(False))
        result = await self._session.execute(
            query.order_by(OTPCode.created_at.desc()).limit(1)
        )
        return result.scalars().first()

    async def create_otp(self, otp: OTPCode) -> OTPCode:
        return await self._persist(otp)

    async def save_otp(self, otp: OTPCode) -> OTPCode:
        return await self._persist(otp)

    async def invalidate_otps(
        self, email: str, purpose: OTPPurpose, now: datetime
    ) -> int:
        return await self._execute_count(
            update(OTPCode)
            .where(
                OTPCode.email == email,
                OTPCode.purpose == purpose,
                OTPCode.is_used.is_(False),
            )
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )

    async def expire_otps(self, now: datetime) -> int:
        return await self._execute_count(
            update(OTPCode)
            .where(OTPCode.is_used.is_(False), OTPCode.expires_at < now)
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )

    async def delete_otps_created_before(self, cutoff: datetime) -> int:
        return await self._execute_count(
            delete(OTPCode).where(OTPCode.created_at < cutoff)
        )

    # ============== Registration flows ==============

    async def get_registration_flow(self, email: str) -> Optional[RegistrationFlow]:
        result = await self._session.execute(
            select(RegistrationFlow).where(RegistrationFlow.email == email)
        )
        return result.scalar_one_or_none()

    async def save_registration_flow(self, flow: RegistrationFlow) -> RegistrationFlow:
        return await self._persist(flow)

    async def delete_registration_flow(self, email: str) -> bool:
        count = await self._execute_count(
            delete(RegistrationFlow).where(RegistrationFlow.email == email)
        )
        return count > 0

    async def delete_expired_registration_flows(self, now: datetime) -> int:
        return await self._execute_count(
            delete(RegistrationFlow).where(RegistrationFlow.expires_at < now)
        )

    # ============== Password reset flows ==============

    async def get_reset_flow(self, email: str) -> Optional[PasswordResetFlow]:
        result = await self._session.execute(
            select(PasswordResetFlow).where(PasswordResetFlow.email == email)
        )
        return result.scalar_one_or_none()

    async def save_reset_flow(self, flow: PasswordResetFlow) -> PasswordResetFlow:
        return await self._persist(flow)

    async def delete_reset_flow(self, email: str) -> bool:
        count = await self._execute_count(
            delete(PasswordResetFlow).where(PasswordResetFlow.email == email)
        )
        return count > 0

    async def delete_stale_reset_flows(
        self, now: datetime, inactive_before: datetime
    ) -> int:
        return await self._execute_count(
            delete(PasswordResetFlow).where(
                or_(
                    PasswordResetFlow.expires_at < now,
                    and_(
                        PasswordResetFlow.is_active.is_(False),
                        PasswordResetFlow.created_at < inactive_before,
                    ),
                )
            )
        )

    # ============== Sessions ==============

    async def create_session(self, session: AuthSession) -> AuthSession:
        return await self._persist(session)

    async def get_session(self, session_id: uuid.UUID) -> Optional[AuthSession]:
        return await self._session.get(AuthSession, session_id)

    async def save_session(self, session: AuthSession) -> AuthSession:
        return await self._persist(session)

    async def list_active_sessions(
        self, user_id: uuid.UUID, now: datetime
    ) -> List[AuthSession]:
        result = await self._session.execute(
            select(AuthSession)
            .where(
                AuthSession.user_id == user_id,
                AuthSession.is_active.is_(True),
                AuthSession.expires_at > now,
            )
            .order_by(AuthSession.last_accessed_at.desc())
        )
        return list(result.scalars().all())

    async def deactivate_sessions(self, user_id: uuid.UUID) -> int:
        return await self._execute_count(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )

    # ============== Login attempts ==============

    async def get_login_attempt(self, email: str) -> Optional[LoginAttempt]:
        return await self._session.get(LoginAttempt, email)

    async def record_failed_login(self, email: str, now: datetime) -> LoginAttempt:
        stmt = (
            pg_insert(LoginAttempt)
            .values(email=email, count=1, last_attempt=now)
            .on_conflict_do_update(
                index_elements=[LoginAttempt.email],
                set_={"count": LoginAttempt.count + 1, "last_attempt": now},
            )
            .returning(LoginAttempt)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        attempt = result.scalar_one()
        await self._session.commit()
        return attempt

    async def save_login_attempt(self, attempt: LoginAttempt) -> LoginAttempt:
        return await self._persist(attempt)

    async def clear_login_attempts(self, email: str) -> None:
        await self._execute_count(delete(LoginAttempt).where(LoginAttempt.email == email))

    # ============== Revoked tokens ==============

    async def revoke_token(self, record: RevokedToken) -> None:
        stmt = (
            pg_insert(RevokedToken)
            .values(
                jti=record.jti,
                token_type=record.token_type,
                revoked_at=record.revoked_at,
                expires_at=record.expires_at,
            )
            .on_conflict_do_nothing(index_elements=[RevokedToken.jti])
        )
        await self._session.execute(stmt)
        await self._session.commit()

    async def is_token_revoked(self, jti: str) -> bool:
        result = await self._session.execute(
            select(RevokedToken.jti).where(RevokedToken.jti == jti)
        )
        return result.scalar_one_or_none() is not None

    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        return await self._execute_count(
            delete(RevokedToken).where(RevokedToken.expires_at < now)
        )

    # ============== Security events ==============

    async def add_security_event(self, event: SecurityEvent) -> None:
        await self._persist(event)
