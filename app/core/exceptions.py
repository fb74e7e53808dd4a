"""
Identity Exceptions

Centralised exception hierarchy for the identity flows. Services raise these
for precondition violations; expected negative outcomes (wrong OTP, expired
code) are returned as ``success=False`` results instead.

Each exception carries the HTTP status the API layer should respond with, so
the services themselves stay free of any framework types.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class IdentityError(Exception):
    """Base class for all identity flow errors."""

    status_code: int = 400
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def details(self) -> Dict[str, Any]:
        """Extra fields to expose alongside the message."""
        return {}

    def headers(self) -> Dict[str, str]:
        """Extra HTTP headers for the error response."""
        return {}


# ============== Validation ==============

class ValidationError(IdentityError):
    """Missing or malformed input, rejected before any store access."""

    status_code = 400
    default_message = "Invalid request"


# ============== State conflicts ==============

class AlreadyRegistered(IdentityError):
    status_code = 409
    default_message = "An account with this email already exists"


class FlowExpired(IdentityError):
    status_code = 410
    default_message = "Registration session expired. Please start over."


class WrongStep(IdentityError):
    status_code = 409
    default_message = "This action is not available at the current step"


class InvalidOrExpired(IdentityError):
    status_code = 400
    default_message = "Invalid or expired password reset request"


class AccountLocked(IdentityError):
    status_code = 423
    default_message = "Account is temporarily locked due to too many failed attempts"

    def __init__(
        self,
        locked_until: datetime,
        now: Optional[datetime] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message)
        self.locked_until = locked_until
        remaining = (locked_until - (now or datetime.now(timezone.utc))).total_seconds()
        self.retry_after = max(0, math.ceil(remaining))

    def details(self) -> Dict[str, Any]:
        return {
            "locked_until": self.locked_until.isoformat(),
            "retry_after": self.retry_after,
        }

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class AccountDeactivated(IdentityError):
    status_code = 403
    default_message = "Account is deactivated"


# ============== Authentication ==============

class InvalidCredentials(IdentityError):
    status_code = 401
    default_message = "Invalid credentials"

    def headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class InvalidToken(IdentityError):
    status_code = 401
    default_message = "Invalid or expired token"

    def headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


# ============== Rate limiting ==============

class RateLimited(IdentityError):
    """Raised when a code is requested again before the resend delay elapsed."""

    status_code = 429

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            message
            or f"Please wait {self.retry_after} seconds before requesting another OTP"
        )

    def details(self) -> Dict[str, Any]:
        return {"retry_after": self.retry_after}

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


# ============== Dependencies ==============

class NotificationDeliveryError(IdentityError):
    status_code = 503
    default_message = "Failed to send verification code. Please try again."


class TokenGenerationError(IdentityError):
    status_code = 500
    default_message = "Failed to generate token"
