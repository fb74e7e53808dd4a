"""
Password Reset Routes
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import ContextDep, get_password_reset_service
from app.middleware.rate_limit import auth_limiter, rate_limit
from app.schemas.auth import (
    EmailRequest,
    MessageResult,
    OtpResent,
    PasswordResetResult,
    PasswordResetStatus,
    PasswordResetVerifyRequest,
    ResetOtpVerification,
    ResetPasswordRequest,
)
from app.services.password_reset_service import PasswordResetService


router = APIRouter(prefix="/auth/password-reset", tags=["Password Reset"])

PasswordResetDep = Annotated[PasswordResetService, Depends(get_password_reset_service)]


@router.post(
    "/request",
    response_model=MessageResult,
    dependencies=[Depends(rate_limit(auth_limiter))],
    summary="Request a password reset code",
)
async def request_reset(
    data: EmailRequest,
    service: PasswordResetDep,
    context: ContextDep,
) -> MessageResult:
    """
    Always answers with the same message; whether the account exists is
    never revealed.
    """
    return await service.request(data.email, context)


@router.post("/verify-otp", response_model=ResetOtpVerification, summary="Check a reset code")
async def verify_reset_otp(
    data: PasswordResetVerifyRequest,
    service: PasswordResetDep,
) -> ResetOtpVerification:
    return await service.verify_otp_only(data.email, data.otp)


@router.post("/reset", response_model=PasswordResetResult, summary="Set a new password")
async def reset_password(
    data: ResetPasswordRequest,
    service: PasswordResetDep,
) -> PasswordResetResult:
    """
    **Flow:**
    1. Validate the new password (400)
    2. Check the reset request is still active (400)
    3. Verify the code; a wrong code returns ``success: false``
    4. Store the new password and revoke every session of the user
    """
    return await service.reset_with_otp(
        data.email, data.otp, data.new_password, data.confirm_password
    )


@router.post("/resend-otp", response_model=OtpResent, summary="Resend the reset code")
async def resend_reset_otp(data: EmailRequest, service: PasswordResetDep) -> OtpResent:
    return await service.resend(data.email)


@router.post("/cancel", response_model=MessageResult, summary="Cancel a password reset")
async def cancel_reset(data: EmailRequest, service: PasswordResetDep) -> MessageResult:
    return await service.cancel(data.email)


@router.get("/status", response_model=Optional[PasswordResetStatus])
async def reset_status(
    service: PasswordResetDep,
    email: str = Query(..., min_length=3),
) -> Optional[PasswordResetStatus]:
    return await service.status(email)
