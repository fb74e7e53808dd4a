"""
Database Enums

Python Enums that map to PostgreSQL ENUM types.
"""

import enum


class UserRole(str, enum.Enum):
    """User role enumeration."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    GUEST = "guest"


class Permission(str, enum.Enum):
    """Permissions granted to users and embedded in access tokens."""
    USER_CREATE = "user:create"
    USER_READ = "user:read"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    FILE_CREATE = "file:create"
    FILE_READ = "file:read"
    FILE_UPDATE = "file:update"
    FILE_DELETE = "file:delete"
    FILE_SHARE = "file:share"
    FILE_UPLOAD = "file:upload"
    ADMIN_ACCESS = "admin:access"


class OTPPurpose(str, enum.Enum):
    """OTP purpose enumeration."""
    REGISTRATION = "REGISTRATION"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


class RegistrationStep(str, enum.Enum):
    """Steps of the three-step registration flow."""
    OTP_PENDING = "OTP_PENDING"
    DETAILS_PENDING = "DETAILS_PENDING"
    COMPLETED = "COMPLETED"


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class SecurityEventType(str, enum.Enum):
    """Audit trail event types."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    REGISTRATION_COMPLETED = "REGISTRATION_COMPLETED"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"


# Legacy users table tracks registration with a numeric step; 3 means complete.
LEGACY_REGISTRATION_COMPLETE = 3
