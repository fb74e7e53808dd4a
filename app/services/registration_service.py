"""
Registration Service

Three-step registration: email, OTP verification, account details.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import AlreadyRegistered, FlowExpired, ValidationError
from app.core.security import hash_password
from app.models.enums import (
    LEGACY_REGISTRATION_COMPLETE,
    OTPPurpose,
    Permission,
    RegistrationStep,
    SecurityEventType,
    UserRole,
)
from app.models.registration_flow import RegistrationFlow
from app.models.user import User
from app.schemas.auth import (
    MessageResult,
    OtpResent,
    RegistrationCompleted,
    RegistrationStarted,
    RegistrationStatus,
    RegistrationVerification,
    RequestContext,
)
from app.schemas.user import UserResponse
from app.services import flow_state
from app.services.audit import record_security_event
from app.services.email_service import Notifier
from app.services.otp_service import OtpService, normalize_email
from app.store.base import CredentialStore, DuplicateRecordError


logger = logging.getLogger(__name__)


class RegistrationService:
    """
    Drives a registration flow from OTP_PENDING to COMPLETED.

    Args:
        store: Credential store.
        otp_service: Engine used for the verification code.
        notifier: Used for the welcome email.
        otp_purpose: EMAIL_VERIFICATION unless a caller wants REGISTRATION codes.
    """

    def __init__(
        self,
        store: CredentialStore,
        otp_service: OtpService,
        notifier: Notifier,
        config: Optional[Settings] = None,
        clock: Clock = utc_now,
        otp_purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION,
    ):
        self.store = store
        self.otp_service = otp_service
        self.notifier = notifier
        self.settings = config or default_settings
        self.clock = clock
        self.otp_purpose = otp_purpose

    async def _ensure_not_registered(self, email: str) -> Optional[User]:
        user = await self.store.get_user_by_email(email)
        if user is not None and user.registration_step >= LEGACY_REGISTRATION_COMPLETE:
            raise AlreadyRegistered()
        return user

    async def _active_flow(self, email: str) -> RegistrationFlow:
        flow = await self.store.get_registration_flow(email)
        if flow is None or flow.is_expired(self.clock()):
            raise FlowExpired()
        return flow

    def _otp_metadata(self, flow: RegistrationFlow) -> dict:
        return {"flowId": str(flow.id), "step": "email_verification"}

    async def start(
        self, email: str, context: Optional[RequestContext] = None
    ) -> RegistrationStarted:
        """
        Step 1: begin (or restart) registration and send the verification code.

        Raises:
            AlreadyRegistered: A completed account exists for the email.
            RateLimited: A code was sent within the resend delay.
        """
        email = normalize_email(email)
        await self._ensure_not_registered(email)

        now = self.clock()
        flow = await self.store.get_registration_flow(email)

        if flow is not None and not flow.is_expired(now):
            flow.step = RegistrationStep.OTP_PENDING
            flow.updated_at = now
            await self.store.save_registration_flow(flow)
        else:
            if flow is not None:
                await self.store.delete_registration_flow(email)
            context = context or RequestContext()
            flow = RegistrationFlow(
                id=uuid.uuid4(),
                email=email,
                step=RegistrationStep.OTP_PENDING,
                expires_at=now + timedelta(hours=self.settings.REGISTRATION_FLOW_EXPIRE_HOURS),
                temp_data={
                    "startedAt": now.isoformat(),
                    "userAgent": context.user_agent or "unknown",
                    "ipAddress": context.ip_address or "unknown",
                },
                created_at=now,
                updated_at=now,
            )
            try:
                await self.store.save_registration_flow(flow)
            except DuplicateRecordError:
                # A concurrent start created the flow first; continue with it.
                flow = await self.store.get_registration_flow(email)
                if flow is None:
                    raise AlreadyRegistered("Registration is already in progress for this email")

        await self.otp_service.generate(email, self.otp_purpose, self._otp_metadata(flow))

        return RegistrationStarted(
            flow_id=flow.id,
            message="Verification code sent to your email",
            expires_at=flow.expires_at,
        )

    async def verify_email(self, email: str, otp: str) -> RegistrationVerification:
        """Step 2: confirm the code. A wrong code leaves the step unchanged."""
        email = normalize_email(email)
        flow = await self._active_flow(email)
        flow_state.require(flow.step, RegistrationStep.OTP_PENDING, "verify_email")

        result = await self.otp_service.verify(email, otp, self.otp_purpose)
        if not result.success:
            return RegistrationVerification(
                success=False,
                message=result.message,
                remaining_attempts=result.remaining_attempts,
            )

        now = self.clock()
        flow.step = flow_state.advance(flow.step, RegistrationStep.DETAILS_PENDING)
        flow.temp_data = {**(flow.temp_data or {}), "emailVerifiedAt": now.isoformat()}
        flow.updated_at = now
        await self.store.save_registration_flow(flow)

        return RegistrationVerification(
            success=True,
            message="Email verified successfully",
            next_step="complete_registration",
        )

    def _validate_details(
        self,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        accept_terms: bool,
    ) -> None:
        if password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(password or "") < self.settings.PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {self.settings.PASSWORD_MIN_LENGTH} characters long"
            )
        if not accept_terms:
            raise ValidationError("You must accept the terms and conditions")
        if not (first_name or "").strip() or not (last_name or "").strip():
            raise ValidationError("First name and last name are required")

    async def complete(
        self,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        accept_terms: bool,
    ) -> RegistrationCompleted:
        """
        Step 3: create the account.

        A legacy user row that never finished the old numeric registration is
        completed in place instead of being duplicated.
        """
        email = normalize_email(email)
        self._validate_details(password, confirm_password, first_name, last_name, accept_terms)

        flow = await self._active_flow(email)
        flow_state.require(flow.step, RegistrationStep.DETAILS_PENDING, "complete")
        existing = await self._ensure_not_registered(email)

        now = self.clock()
        password_hash = hash_password(password, self.settings.BCRYPT_ROUNDS)
        registration_meta = {
            "registrationFlowId": str(flow.id),
            "registrationCompletedAt": now.isoformat(),
            "source": "3_step_registration",
        }

        if existing is not None:
            user = existing
            user.password_hash = password_hash
            user.first_name = first_name.strip()
            user.last_name = last_name.strip()
            user.is_verified = True
            user.registration_step = LEGACY_REGISTRATION_COMPLETE
            user.extra_data = {**(user.extra_data or {}), **registration_meta}
            user.updated_at = now
            await self.store.save_user(user)
        else:
            user = User(
                id=uuid.uuid4(),
                email=email,
                password_hash=password_hash,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                role=UserRole.USER,
                permissions=[Permission.USER_READ.value],
                is_active=True,
                is_verified=True,
                registration_step=LEGACY_REGISTRATION_COMPLETE,
                extra_data=registration_meta,
                last_login_at=None,
                created_at=now,
                updated_at=now,
            )
            try:
                await self.store.create_user(user)
            except DuplicateRecordError:
                logger.info(f"Registration for {email} lost a race with another account creation")
                raise AlreadyRegistered()

        flow.step = flow_state.advance(flow.step, RegistrationStep.COMPLETED)
        flow.temp_data = {
            **(flow.temp_data or {}),
            "completedAt": now.isoformat(),
            "userId": str(user.id),
        }
        flow.updated_at = now
        await self.store.save_registration_flow(flow)

        await record_security_event(
            self.store,
            now,
            SecurityEventType.REGISTRATION_COMPLETED.value,
            user_id=user.id,
            email=email,
        )

        sent = await self.notifier.send_welcome(
            email,
            {
                "first_name": user.first_name,
                "email": email,
                "dashboard_url": self.settings.DASHBOARD_URL,
            },
        )
        if not sent:
            logger.warning(f"Failed to send welcome email to {email}")

        return RegistrationCompleted(
            user=UserResponse.model_validate(user),
            message="Registration completed successfully",
        )

    async def resend(self, email: str) -> OtpResent:
        email = normalize_email(email)
        flow = await self._active_flow(email)
        flow_state.require(flow.step, RegistrationStep.OTP_PENDING, "resend")

        generated = await self.otp_service.resend(
            email, self.otp_purpose, self._otp_metadata(flow)
        )
        return OtpResent(
            message="Verification code resent to your email",
            expires_at=generated.expires_at,
        )

    async def cancel(self, email: str) -> MessageResult:
        """Drop the flow and any outstanding codes. Safe to call repeatedly."""
        email = normalize_email(email)
        if await self.store.delete_registration_flow(email):
            await self.otp_service.invalidate(email, self.otp_purpose)
            logger.info(f"Registration cancelled for {email}")
        return MessageResult(message="Registration cancelled successfully")

    async def status(self, email: str) -> Optional[RegistrationStatus]:
        email = normalize_email(email)
        flow = await self.store.get_registration_flow(email)
        if flow is None or flow.is_expired(self.clock()):
            return None

        otp = None
        if flow.step == RegistrationStep.OTP_PENDING:
            otp = await self.otp_service.status(email, self.otp_purpose)

        return RegistrationStatus(
            email=flow.email,
            step=flow.step,
            expires_at=flow.expires_at,
            created_at=flow.created_at,
            otp=otp,
        )

    async def cleanup_expired(self) -> int:
        count = await self.store.delete_expired_registration_flows(self.clock())
        if count:
            logger.info(f"Deleted {count} expired registration flows")
        return count
