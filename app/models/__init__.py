"""
Qub Drive Identity - Models Module

This module exports all SQLAlchemy models for the application.
Import Base for Alembic migrations.
"""

from app.core.database import Base

# Enums
from app.models.enums import (
    UserRole,
    Permission,
    OTPPurpose,
    RegistrationStep,
    TokenType,
    SecurityEventType,
)

# Models
from app.models.user import User
from app.models.otp_code import OTPCode
from app.models.registration_flow import RegistrationFlow
from app.models.password_reset_flow import PasswordResetFlow
from app.models.session import AuthSession
from app.models.login_attempt import LoginAttempt
from app.models.revoked_token import RevokedToken
from app.models.security_event import SecurityEvent

__all__ = [
    # Base
    "Base",
    # Enums
    "UserRole",
    "Permission",
    "OTPPurpose",
    "RegistrationStep",
    "TokenType",
    "SecurityEventType",
    # Models
    "User",
    "OTPCode",
    "RegistrationFlow",
    "PasswordResetFlow",
    "AuthSession",
    "LoginAttempt",
    "RevokedToken",
    "SecurityEvent",
]
