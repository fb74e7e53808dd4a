"""
Qub Drive Identity - Services Module

Business logic layer.
"""

from app.services.auth_service import AuthService
from app.services.email_service import EmailNotifier
from app.services.otp_service import OtpService
from app.services.password_reset_service import PasswordResetService
from app.services.registration_service import RegistrationService

__all__ = [
    "AuthService",
    "EmailNotifier",
    "OtpService",
    "PasswordResetService",
    "RegistrationService",
]
