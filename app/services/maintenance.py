"""
Maintenance

Idempotent cleanup of expired OTP codes, flows and revoked tokens. Meant to be
run periodically (cron, scheduler) or on demand via ``cleanup_expired.py``.
"""

import logging
from typing import Dict, Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.services.auth_service import AuthService
from app.services.email_service import EmailNotifier
from app.services.otp_service import OtpService
from app.services.password_reset_service import PasswordResetService
from app.services.registration_service import RegistrationService
from app.store.base import CredentialStore


logger = logging.getLogger(__name__)


async def run_cleanup(
    store: CredentialStore,
    config: Optional[Settings] = None,
    clock: Clock = utc_now,
) -> Dict[str, int]:
    """
    Run every cleanup task once.

    Returns:
        Dict[str, int]: Affected row count per task.
    """
    config = config or default_settings
    notifier = EmailNotifier(config)
    otp_service = OtpService(store, notifier, config=config, clock=clock)

    report = {
        "otp_expired": await otp_service.cleanup_expired(),
        "otp_deleted": await otp_service.cleanup_old(),
        "registration_flows": await RegistrationService(
            store, otp_service, notifier, config=config, clock=clock
        ).cleanup_expired(),
        "password_reset_flows": await PasswordResetService(
            store, otp_service, notifier, config=config, clock=clock
        ).cleanup_expired(),
        "revoked_tokens": await AuthService(
            store, notifier, config=config, clock=clock
        ).cleanup_expired(),
    }
    logger.info(f"Cleanup finished: {report}")
    return report
