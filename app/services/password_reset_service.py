"""
Password Reset Service

Forgot-password flow: request a code, optionally check it, then set a new
password. ``request`` answers identically whether or not the account exists.
"""

import logging
import math
import uuid
from datetime import timedelta
from hmac import compare_digest
from typing import Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    InvalidOrExpired,
    NotificationDeliveryError,
    RateLimited,
    ValidationError,
)
from app.core.security import hash_password, hash_token
from app.models.enums import OTPPurpose, SecurityEventType
from app.models.password_reset_flow import PasswordResetFlow
from app.schemas.auth import (
    MessageResult,
    OtpResent,
    PasswordResetResult,
    PasswordResetStatus,
    RequestContext,
    ResetOtpVerification,
)
from app.services.audit import record_security_event
from app.services.email_service import Notifier
from app.services.otp_service import OtpService, normalize_email
from app.store.base import CredentialStore


logger = logging.getLogger(__name__)

GENERIC_REQUEST_MESSAGE = (
    "If an account with this email exists, you will receive a password reset code shortly."
)


class PasswordResetService:
    """Password reset flow on top of the OTP engine."""

    def __init__(
        self,
        store: CredentialStore,
        otp_service: OtpService,
        notifier: Notifier,
        config: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.otp_service = otp_service
        self.notifier = notifier
        self.settings = config or default_settings
        self.clock = clock

    def _is_usable(self, flow: Optional[PasswordResetFlow]) -> bool:
        return flow is not None and flow.is_active and not flow.is_expired(self.clock())

    async def request(
        self, email: str, context: Optional[RequestContext] = None
    ) -> MessageResult:
        """
        Start a reset for an active account.

        Returns the same message for unknown, inactive and rate-limited
        addresses.
        """
        email = normalize_email(email)
        response = MessageResult(message=GENERIC_REQUEST_MESSAGE)

        user = await self.store.get_user_by_email(email)
        if user is None:
            logger.info(f"Password reset requested for non-existent email: {email}")
            return response
        if not user.is_active:
            logger.info(f"Password reset requested for inactive user: {email}")
            return response

        now = self.clock()
        expires_at = now + timedelta(hours=self.settings.PASSWORD_RESET_EXPIRE_HOURS)
        flow = await self.store.get_reset_flow(email)

        if self._is_usable(flow):
            flow.created_at = now
            flow.expires_at = expires_at
            flow.verified_code_hash = None
            await self.store.save_reset_flow(flow)
        else:
            if flow is not None:
                await self.store.delete_reset_flow(email)
            flow = PasswordResetFlow(
                id=uuid.uuid4(),
                email=email,
                is_active=True,
                verified_code_hash=None,
                created_at=now,
                expires_at=expires_at,
            )
            await self.store.save_reset_flow(flow)

        try:
            await self.otp_service.generate(
                email,
                OTPPurpose.PASSWORD_RESET,
                {"resetFlowId": str(flow.id), "userId": str(user.id)},
            )
        except RateLimited as e:
            logger.info(f"Password reset code for {email} throttled ({e.retry_after}s)")
        except NotificationDeliveryError:
            logger.warning(f"Password reset code for {email} could not be delivered")

        await record_security_event(
            self.store,
            now,
            SecurityEventType.PASSWORD_CHANGE.value,
            user_id=user.id,
            email=email,
            context=context,
            metadata={"action": "password_reset_requested", "resetFlowId": str(flow.id)},
        )
        return response

    async def verify_otp_only(self, email: str, otp: str) -> ResetOtpVerification:
        """
        Check the code before the new password is chosen.

        The code is consumed; the flow remembers it so ``reset_with_otp``
        accepts the same code afterwards.
        """
        email = normalize_email(email)
        flow = await self.store.get_reset_flow(email)
        if not self._is_usable(flow):
            return ResetOtpVerification(
                success=False,
                message="Invalid or expired password reset request",
            )

        result = await self.otp_service.verify(email, otp, OTPPurpose.PASSWORD_RESET)
        if not result.success:
            return ResetOtpVerification(success=False, message=result.message)

        flow.verified_code_hash = hash_token(otp.strip())
        await self.store.save_reset_flow(flow)

        remaining = (flow.expires_at - self.clock()).total_seconds()
        return ResetOtpVerification(
            success=True,
            message="OTP verified. You can now set your new password.",
            valid_for=math.ceil(remaining / 60),
        )

    async def reset_with_otp(
        self,
        email: str,
        otp: str,
        new_password: str,
        confirm_password: str,
    ) -> PasswordResetResult:
        """
        Set a new password and log the user out everywhere.

        Raises:
            ValidationError: Passwords differ or are too short.
            InvalidOrExpired: No usable flow, or the account is gone or inactive.
        """
        email = normalize_email(email)
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(new_password or "") < self.settings.PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {self.settings.PASSWORD_MIN_LENGTH} characters long"
            )

        user = await self.store.get_user_by_email(email)
        if user is None or not user.is_active:
            raise InvalidOrExpired()

        flow = await self.store.get_reset_flow(email)
        if not self._is_usable(flow):
            raise InvalidOrExpired()

        code = (otp or "").strip()
        pre_verified = bool(
            code
            and flow.verified_code_hash
            and compare_digest(flow.verified_code_hash, hash_token(code))
        )
        if not pre_verified:
            result = await self.otp_service.verify(email, code, OTPPurpose.PASSWORD_RESET)
            if not result.success:
                return PasswordResetResult(success=False, message=result.message)

        now = self.clock()
        user.password_hash = hash_password(new_password, self.settings.BCRYPT_ROUNDS)
        user.updated_at = now
        await self.store.save_user(user)

        flow.is_active = False
        flow.verified_code_hash = None
        await self.store.save_reset_flow(flow)

        revoked = await self.store.deactivate_sessions(user.id)

        await record_security_event(
            self.store,
            now,
            SecurityEventType.PASSWORD_CHANGE.value,
            user_id=user.id,
            email=email,
            metadata={
                "action": "password_reset_completed",
                "resetFlowId": str(flow.id),
                "sessionsRevoked": revoked,
            },
        )

        sent = await self.notifier.send_security_alert(
            email,
            {"event": "password_reset", "time": now.isoformat(), "sessions_revoked": revoked},
        )
        if not sent:
            logger.warning(f"Failed to send password reset alert to {email}")

        logger.info(f"Password reset completed for {email} - User ID: {user.id}")
        return PasswordResetResult(
            success=True,
            message="Password reset successfully. Please log in with your new password.",
        )

    async def resend(self, email: str) -> OtpResent:
        email = normalize_email(email)
        flow = await self.store.get_reset_flow(email)
        if not self._is_usable(flow):
            raise InvalidOrExpired("No active password reset request found")

        # A code checked by verify_otp_only stops counting once a new one is asked for.
        if flow.verified_code_hash is not None:
            flow.verified_code_hash = None
            await self.store.save_reset_flow(flow)

        user = await self.store.get_user_by_email(email)
        generated = await self.otp_service.resend(
            email,
            OTPPurpose.PASSWORD_RESET,
            {"resetFlowId": str(flow.id), "userId": str(user.id) if user else None},
        )
        return OtpResent(
            message="Password reset code resent to your email",
            expires_at=generated.expires_at,
        )

    async def cancel(self, email: str) -> MessageResult:
        email = normalize_email(email)
        flow = await self.store.get_reset_flow(email)
        if flow is not None and flow.is_active:
            flow.is_active = False
            flow.verified_code_hash = None
            await self.store.save_reset_flow(flow)
            await self.otp_service.invalidate(email, OTPPurpose.PASSWORD_RESET)
            logger.info(f"Password reset cancelled for {email}")
        return MessageResult(message="Password reset cancelled successfully")

    async def status(self, email: str) -> Optional[PasswordResetStatus]:
        email = normalize_email(email)
        flow = await self.store.get_reset_flow(email)
        if not self._is_usable(flow):
            return None

        otp = await self.otp_service.status(email, OTPPurpose.PASSWORD_RESET)
        return PasswordResetStatus(
            email=flow.email,
            is_active=True,
            expires_at=flow.expires_at,
            created_at=flow.created_at,
            otp=otp,
        )

    async def cleanup_expired(self) -> int:
        """Delete expired flows and inactive ones past the retention window."""
        now = self.clock()
        inactive_before = now - timedelta(hours=self.settings.INACTIVE_RESET_RETENTION_HOURS)
        count = await self.store.delete_stale_reset_flows(now, inactive_before)
        if count:
            logger.info(f"Cleaned up {count} expired password reset flows")
        return count
