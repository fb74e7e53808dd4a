"""
Auth Schemas

Pydantic models for the registration, password reset and session flows:
request bodies accepted by the API and the results returned by the services.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from app.models.enums import RegistrationStep
from app.schemas.token import TokenPair
from app.schemas.user import UserResponse


# ============== OTP engine results ==============

class GeneratedOtp(BaseModel):
    """A freshly generated code. The plain code never leaves the service layer."""

    otp_id: uuid.UUID
    code: str
    expires_at: datetime


class OtpVerification(BaseModel):
    success: bool
    message: str
    remaining_attempts: Optional[int] = None


class OtpStatus(BaseModel):
    has_active_otp: bool
    expires_at: Optional[datetime] = None
    attempts_used: Optional[int] = None
    max_attempts: Optional[int] = None
    can_resend: bool = True
    resend_available_in: Optional[int] = None  # seconds


# ============== Shared ==============

class RequestContext(BaseModel):
    """Client details captured from the HTTP request."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class MessageResult(BaseModel):
    message: str


class OtpResent(BaseModel):
    message: str
    expires_at: datetime


# ============== Registration ==============

class RegistrationStartRequest(BaseModel):
    email: EmailStr = Field(..., description="Email address to register")


class VerifyEmailRequest(BaseModel):
    email: EmailStr = Field(..., description="Email address being registered")
    otp: str = Field(..., min_length=4, max_length=10, description="Verification code")


class CompleteRegistrationRequest(BaseModel):
    email: EmailStr
    password: str
    confirm_password: str
    first_name: str
    last_name: str
    accept_terms: bool = False


class EmailRequest(BaseModel):
    email: EmailStr = Field(..., description="User's email address")


class RegistrationStarted(BaseModel):
    flow_id: uuid.UUID
    message: str
    expires_at: datetime
    next_step: str = "verify_email"


class RegistrationVerification(BaseModel):
    success: bool
    message: str
    next_step: Optional[str] = None
    remaining_attempts: Optional[int] = None


class RegistrationCompleted(BaseModel):
    user: UserResponse
    message: str


class RegistrationStatus(BaseModel):
    email: str
    step: RegistrationStep
    expires_at: datetime
    created_at: Optional[datetime] = None
    otp: Optional[OtpStatus] = None


# ============== Password reset ==============

class PasswordResetVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=4, max_length=10)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=4, max_length=10)
    new_password: str
    confirm_password: str


class ResetOtpVerification(BaseModel):
    success: bool
    message: str
    valid_for: Optional[int] = None  # minutes


class PasswordResetResult(BaseModel):
    success: bool
    message: str


class PasswordResetStatus(BaseModel):
    email: str
    is_active: bool
    expires_at: datetime
    created_at: datetime
    otp: Optional[OtpStatus] = None


# ============== Sessions ==============

class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., min_length=1, description="User's password")


class LoginResult(BaseModel):
    user: UserResponse
    tokens: TokenPair


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class SessionResponse(BaseModel):
    id: uuid.UUID
    device_info: Dict[str, Any] = {}
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}
