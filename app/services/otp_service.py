"""
OTP Service

Handles OTP generation, storage, verification and cleanup per
(email, purpose) pair.
"""

import logging
import math
import secrets
import uuid
from datetime import timedelta
from hmac import compare_digest
from typing import Any, Dict, Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import NotificationDeliveryError, RateLimited, ValidationError
from app.core.locks import KeyedLock
from app.core.security import hash_token
from app.models.enums import OTPPurpose
from app.models.otp_code import OTPCode
from app.schemas.auth import GeneratedOtp, OtpStatus, OtpVerification
from app.services.email_service import Notifier
from app.store.base import CredentialStore, DuplicateRecordError


logger = logging.getLogger(__name__)

# Shared by every OtpService in the process so concurrent requests serialize.
otp_locks = KeyedLock()


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email, rejecting empty input."""
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValidationError("Email is required")
    return normalized


def generate_otp(length: int) -> str:
    """Generate a numeric code of exactly ``length`` digits, uniformly."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(10 ** length - low))


class OtpService:
    """One-time code engine."""

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        config: Optional[Settings] = None,
        clock: Clock = utc_now,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = config or default_settings
        self.clock = clock
        self.locks = locks or otp_locks

    @property
    def resend_delay(self) -> int:
        return self.settings.OTP_RESEND_DELAY_SECONDS

    def _seconds_until_resend(self, record: OTPCode) -> int:
        elapsed = (self.clock() - record.created_at).total_seconds()
        return math.ceil(self.resend_delay - elapsed)

    async def generate(
        self,
        email: str,
        purpose: OTPPurpose,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GeneratedOtp:
        """
        Issue a new code for the pair and hand it to the notifier.

        Raises:
            RateLimited: An unexpired code was issued within the resend delay.
            NotificationDeliveryError: Delivery failed in production.
        """
        email = normalize_email(email)
        async with self.locks.hold((email, purpose)):
            return await self._generate(email, purpose, metadata)

    async def _generate(
        self,
        email: str,
        purpose: OTPPurpose,
        metadata: Optional[Dict[str, Any]],
    ) -> GeneratedOtp:
        now = self.clock()

        latest = await self.store.get_latest_otp(email, purpose)
        if latest is not None and not latest.is_expired(now):
            wait = self._seconds_until_resend(latest)
            if wait > 0:
                raise RateLimited(wait)

        await self.store.invalidate_otps(email, purpose, now)

        code = generate_otp(self.settings.OTP_LENGTH)
        record = OTPCode(
            id=uuid.uuid4(),
            email=email,
            code_hash=hash_token(code),
            purpose=purpose,
            expires_at=now + timedelta(minutes=self.settings.OTP_EXPIRE_MINUTES),
            is_used=False,
            used_at=None,
            attempts=0,
            max_attempts=self.settings.OTP_MAX_ATTEMPTS,
            extra_data=dict(metadata or {}),
            created_at=now,
        )
        try:
            await self.store.create_otp(record)
        except DuplicateRecordError:
            # Another instance won the race for this pair.
            raise RateLimited(self.resend_delay)

        sent = await self.notifier.send_otp(email, code, purpose, record.expires_at)
        if not sent:
            if self.settings.is_production:
                record.is_used = True
                record.used_at = now
                await self.store.save_otp(record)
                raise NotificationDeliveryError()
            logger.warning(
                f"OTP delivery to {email} ({purpose.value}) failed; code kept valid outside production"
            )

        return GeneratedOtp(otp_id=record.id, code=code, expires_at=record.expires_at)

    async def verify(self, email: str, code: str, purpose: OTPPurpose) -> OtpVerification:
        """
        Check a submitted code against the pair's unused record.

        The attempt counter is persisted before the comparison, so a crash
        mid-check still consumes an attempt.
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not code:
            raise ValidationError("OTP code is required")

        now = self.clock()
        record = await self.store.get_latest_otp(email, purpose)
        if record is None:
            return OtpVerification(
                success=False,
                message="No valid OTP found. Please request a new one.",
            )

        if record.is_expired(now):
            await self._mark_used(record)
            return OtpVerification(
                success=False,
                message="OTP has expired. Please request a new one.",
            )

        if record.attempts >= record.max_attempts:
            await self._mark_used(record)
            return OtpVerification(
                success=False,
                message="Maximum verification attempts exceeded. Please request a new OTP.",
                remaining_attempts=0,
            )

        record.attempts += 1
        await self.store.save_otp(record)

        if not compare_digest(record.code_hash, hash_token(code)):
            remaining = max(0, record.max_attempts - record.attempts)
            if remaining > 0:
                message = f"Invalid OTP. {remaining} attempts remaining."
            else:
                message = "Invalid OTP. Maximum attempts exceeded."
            return OtpVerification(
                success=False,
                message=message,
                remaining_attempts=remaining,
            )

        await self._mark_used(record)
        return OtpVerification(success=True, message="OTP verified successfully.")

    async def resend(
        self,
        email: str,
        purpose: OTPPurpose,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GeneratedOtp:
        """Like generate, but the delay applies to used codes too."""
        email = normalize_email(email)
        async with self.locks.hold((email, purpose)):
            latest = await self.store.get_latest_otp(email, purpose, include_used=True)
            if latest is not None:
                wait = self._seconds_until_resend(latest)
                if wait > 0:
                    raise RateLimited(wait)

            await self.store.invalidate_otps(email, purpose, self.clock())
            return await self._generate(email, purpose, metadata)

    async def status(self, email: str, purpose: OTPPurpose) -> OtpStatus:
        email = normalize_email(email)
        now = self.clock()

        latest_any = await self.store.get_latest_otp(email, purpose, include_used=True)
        wait = self._seconds_until_resend(latest_any) if latest_any else 0
        can_resend = wait <= 0

        active = await self.store.get_latest_otp(email, purpose)
        if active is None or active.is_expired(now):
            return OtpStatus(
                has_active_otp=False,
                can_resend=can_resend,
                resend_available_in=None if can_resend else wait,
            )

        return OtpStatus(
            has_active_otp=True,
            expires_at=active.expires_at,
            attempts_used=active.attempts,
            max_attempts=active.max_attempts,
            can_resend=can_resend,
            resend_available_in=None if can_resend else wait,
        )

    async def invalidate(self, email: str, purpose: OTPPurpose) -> int:
        email = normalize_email(email)
        return await self.store.invalidate_otps(email, purpose, self.clock())

    async def cleanup_expired(self) -> int:
        """Mark every expired, unused code as used."""
        count = await self.store.expire_otps(self.clock())
        if count:
            logger.info(f"Invalidated {count} expired OTP codes")
        return count

    async def cleanup_old(self, older_than_hours: Optional[int] = None) -> int:
        hours = older_than_hours if older_than_hours is not None else self.settings.OTP_RETENTION_HOURS
        cutoff = self.clock() - timedelta(hours=hours)
        count = await self.store.delete_otps_created_before(cutoff)
        if count:
            logger.info(f"Deleted {count} OTP codes older than {hours}h")
        return count

    async def _mark_used(self, record: OTPCode) -> None:
        record.is_used = True
        record.used_at = self.clock()
        await self.store.save_otp(record)
