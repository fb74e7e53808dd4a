"""
Auth Service

Login with lockout, session-bound token pairs, refresh rotation, logout and
revocation.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import List, Optional, Tuple

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    AccountDeactivated,
    AccountLocked,
    InvalidCredentials,
    InvalidToken,
    ValidationError,
)
from app.core.security import (
    decode_signed,
    decode_unverified,
    generate_token_pair,
    hash_password,
    hash_token,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)
from app.models.enums import SecurityEventType, TokenType, UserRole
from app.models.revoked_token import RevokedToken
from app.models.session import AuthSession
from app.models.user import User
from app.schemas.auth import LoginResult, RequestContext
from app.schemas.token import IssuedToken, TokenClaims, TokenPair, TokenPayload
from app.schemas.user import UserResponse
from app.services.audit import record_security_event
from app.services.email_service import Notifier
from app.services.otp_service import normalize_email
from app.store.base import CredentialStore


logger = logging.getLogger(__name__)


@lru_cache
def _dummy_hash(rounds: int) -> str:
    # Checked against when the email is unknown so both failures cost one bcrypt round trip.
    return hash_password("__dummy_timing_prevention__", rounds)


def _parse_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _device_dict(device_info: Optional[RequestContext]) -> dict:
    if device_info is None:
        return {}
    return {
        "userAgent": device_info.user_agent or "unknown",
        "ipAddress": device_info.ip_address or "unknown",
    }


class AuthService:
    """Session and token service."""

    def __init__(
        self,
        store: CredentialStore,
        notifier: Optional[Notifier] = None,
        config: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = config or default_settings
        self.clock = clock

    # ============== Login ==============

    async def login(
        self,
        email: str,
        password: str,
        device_info: Optional[RequestContext] = None,
    ) -> LoginResult:
        """
        Authenticate with email and password and open a new session.

        Raises:
            AccountLocked: Too many consecutive failures; lock still running.
            InvalidCredentials: Unknown email or wrong password (counted).
            AccountDeactivated: Correct password on a deactivated account.
        """
        email = normalize_email(email)
        if not password:
            raise ValidationError("Password is required")

        now = self.clock()
        attempt = await self.store.get_login_attempt(email)
        if attempt is not None and attempt.is_locked(now):
            raise AccountLocked(attempt.locked_until, now=now)

        user = await self.store.get_user_by_email(email)
        if user is None:
            verify_password(password, _dummy_hash(self.settings.BCRYPT_ROUNDS))
            await self._record_failure(email, now, device_info, reason="unknown_email")
            raise InvalidCredentials()

        if not user.password_hash or not verify_password(password, user.password_hash):
            await self._record_failure(
                email, now, device_info, reason="bad_password", user_id=user.id
            )
            raise InvalidCredentials()

        # Checked only after the password matched; not counted as a failure.
        if not user.is_active:
            raise AccountDeactivated()

        await self.store.clear_login_attempts(email)
        user.last_login_at = now
        user.updated_at = now
        await self.store.save_user(user)

        tokens = await self._open_session(user, device_info)
        await record_security_event(
            self.store,
            now,
            SecurityEventType.LOGIN_SUCCESS.value,
            user_id=user.id,
            email=email,
            context=device_info,
            metadata={"sessionId": tokens.session_id},
        )
        return LoginResult(user=UserResponse.model_validate(user), tokens=tokens)

    async def _record_failure(
        self,
        email: str,
        now: datetime,
        device_info: Optional[RequestContext],
        reason: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> None:
        attempt = await self.store.record_failed_login(email, now)
        await record_security_event(
            self.store,
            now,
            SecurityEventType.LOGIN_FAILED.value,
            user_id=user_id,
            email=email,
            success=False,
            context=device_info,
            metadata={"reason": reason, "attempts": attempt.count},
        )

        if attempt.count >= self.settings.MAX_LOGIN_ATTEMPTS:
            attempt.locked_until = now + timedelta(minutes=self.settings.LOCKOUT_DURATION_MINUTES)
            await self.store.save_login_attempt(attempt)
            await record_security_event(
                self.store,
                now,
                SecurityEventType.ACCOUNT_LOCKED.value,
                user_id=user_id,
                email=email,
                success=False,
                context=device_info,
                metadata={"lockedUntil": attempt.locked_until.isoformat()},
            )
            logger.warning(
                f"Account {email} locked until {attempt.locked_until.isoformat()} "
                f"after {attempt.count} failed attempts"
            )

    # ============== Tokens & sessions ==============

    def _issue_pair(self, user: User, session_id: uuid.UUID) -> Tuple[TokenPair, IssuedToken]:
        claims = TokenClaims(
            user_id=str(user.id),
            email=user.email,
            role=UserRole(user.role).value,
            permissions=list(user.permissions or []),
            session_id=str(session_id),
        )
        access, refresh = generate_token_pair(claims, self.settings)
        pair = TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=access.expires_in,
            refresh_expires_in=refresh.expires_in,
            session_id=str(session_id),
        )
        return pair, refresh

    async def _open_session(
        self, user: User, device_info: Optional[RequestContext]
    ) -> TokenPair:
        now = self.clock()
        session_id = uuid.uuid4()
        pair, refresh = self._issue_pair(user, session_id)
        await self.store.create_session(
            AuthSession(
                id=session_id,
                user_id=user.id,
                refresh_token_hash=hash_token(refresh.token),
                device_info=_device_dict(device_info),
                is_active=True,
                expires_at=now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS),
                created_at=now,
                last_accessed_at=now,
            )
        )
        return pair

    async def _load_session(self, session_id) -> Optional[AuthSession]:
        parsed = _parse_uuid(session_id)
        if parsed is None:
            return None
        return await self.store.get_session(parsed)

    async def refresh(
        self,
        refresh_token: str,
        device_info: Optional[RequestContext] = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair on the same session.

        The session's stored refresh hash is replaced, so the presented token
        cannot be used again.
        """
        invalid = InvalidToken("Invalid refresh token")

        verification = verify_refresh_token(refresh_token, self.settings)
        if not verification.is_valid:
            raise invalid
        payload = verification.payload

        if await self.store.is_token_revoked(payload.jti):
            raise invalid

        now = self.clock()
        session = await self._load_session(payload.session_id)
        if session is None or not session.is_active or session.is_expired(now):
            raise invalid
        if session.refresh_token_hash != hash_token(refresh_token):
            raise invalid

        user = await self.store.get_user_by_id(session.user_id)
        if user is None or not user.is_active:
            raise invalid

        pair, refresh = self._issue_pair(user, session.id)
        session.refresh_token_hash = hash_token(refresh.token)
        session.last_accessed_at = now
        if device_info is not None:
            session.device_info = {**(session.device_info or {}), **_device_dict(device_info)}
        await self.store.save_session(session)
        return pair

    async def logout(self, access_token: str) -> None:
        """
        End the session named by the token. Always succeeds from the caller's
        point of view; expired tokens are accepted.

        Only a token with a valid signature is written to the deny-list.
        """
        try:
            claims = decode_unverified(access_token or "")
            if not claims:
                return

            now = self.clock()
            session = await self._load_session(claims.get("session_id"))
            if session is not None and session.is_active:
                session.is_active = False
                await self.store.save_session(session)

            signed = decode_signed(access_token, self.settings)
            if signed is None:
                logger.info("Logout with an unverifiable token; nothing revoked")
                return

            await self._revoke_claims(signed, now)
            await record_security_event(
                self.store,
                now,
                SecurityEventType.LOGOUT.value,
                user_id=_parse_uuid(signed.get("sub")),
                email=signed.get("email"),
                metadata={"sessionId": signed.get("session_id")},
            )
        except Exception as e:
            logger.warning(f"Logout cleanup failed: {e}")

    def _max_lifetime(self, token_type: TokenType) -> timedelta:
        if token_type is TokenType.REFRESH:
            return timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        return timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    async def _revoke_claims(self, claims: dict, now: datetime) -> bool:
        """Deny-list verified claims. The row never outlives a freshly issued token."""
        jti = claims.get("jti")
        if not jti:
            return False

        try:
            token_type = TokenType(claims.get("token_type"))
        except ValueError:
            token_type = TokenType.ACCESS

        latest = now + self._max_lifetime(token_type)
        exp = claims.get("exp")
        if isinstance(exp, (int, float)):
            expires_at = min(datetime.fromtimestamp(exp, tz=timezone.utc), latest)
        else:
            expires_at = latest

        await self.store.revoke_token(
            RevokedToken(
                jti=str(jti),
                token_type=token_type,
                revoked_at=now,
                expires_at=expires_at,
            )
        )
        return True

    async def authenticate(self, access_token: str) -> TokenPayload:
        """
        Validate an access token for a protected request.

        Raises:
            InvalidToken: Bad or expired token, revoked, session ended or
                user deactivated.
        """
        verification = verify_access_token(access_token, self.settings)
        if not verification.is_valid:
            raise InvalidToken(verification.error)
        payload = verification.payload

        if await self.store.is_token_revoked(payload.jti):
            raise InvalidToken("Token has been revoked")

        if payload.session_id:
            session = await self._load_session(payload.session_id)
            if session is None or not session.is_active or session.is_expired(self.clock()):
                raise InvalidToken("Session is no longer active")

        user = await self.get_user(payload.user_id)
        if user is None or not user.is_active:
            raise InvalidToken("User not found or inactive")

        return payload

    async def get_user(self, user_id) -> Optional[User]:
        parsed = _parse_uuid(user_id)
        if parsed is None:
            return None
        return await self.store.get_user_by_id(parsed)

    async def revoke_token(self, token: str) -> bool:
        """Deny-list a token until its natural expiry. False for forged or unreadable tokens."""
        claims = decode_signed(token, self.settings)
        if not claims:
            return False
        return await self._revoke_claims(claims, self.clock())

    async def revoke_session(
        self, session_id, user_id: Optional[uuid.UUID] = None
    ) -> bool:
        """
        Deactivate one session. Returns False when it does not exist (or is
        not owned by ``user_id`` when given); revoking twice is fine.
        """
        session = await self._load_session(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            return False
        if session.is_active:
            session.is_active = False
            await self.store.save_session(session)
        return True

    async def revoke_all_sessions(self, user_id: uuid.UUID) -> int:
        count = await self.store.deactivate_sessions(user_id)
        await record_security_event(
            self.store,
            self.clock(),
            SecurityEventType.SESSIONS_REVOKED.value,
            user_id=user_id,
            metadata={"count": count},
        )
        return count

    async def list_active_sessions(self, user_id: uuid.UUID) -> List[AuthSession]:
        return await self.store.list_active_sessions(user_id, self.clock())

    async def change_password(
        self,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(new_password or "") < self.settings.PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {self.settings.PASSWORD_MIN_LENGTH} characters long"
            )

        user = await self.get_user(user_id)
        if user is None or not user.is_active:
            raise InvalidToken("User not found or inactive")
        if not user.password_hash or not verify_password(current_password or "", user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        now = self.clock()
        user.password_hash = hash_password(new_password, self.settings.BCRYPT_ROUNDS)
        user.updated_at = now
        await self.store.save_user(user)

        await record_security_event(
            self.store,
            now,
            SecurityEventType.PASSWORD_CHANGE.value,
            user_id=user.id,
            email=user.email,
            metadata={"action": "password_changed"},
        )

        if self.notifier is not None:
            sent = await self.notifier.send_security_alert(
                user.email, {"event": "password_changed", "time": now.isoformat()}
            )
            if not sent:
                logger.warning(f"Failed to send password change alert to {user.email}")

    async def cleanup_expired(self) -> int:
        """Purge deny-list rows whose tokens have expired on their own."""
        count = await self.store.delete_expired_revoked_tokens(self.clock())
        if count:
            logger.info(f"Purged {count} expired revoked tokens")
        return count
