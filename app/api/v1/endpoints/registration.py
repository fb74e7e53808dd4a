"""
Registration Routes

Three-step registration: start, verify email, complete.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import ContextDep, get_registration_service
from app.middleware.rate_limit import auth_limiter, rate_limit
from app.schemas.auth import (
    CompleteRegistrationRequest,
    EmailRequest,
    MessageResult,
    OtpResent,
    RegistrationCompleted,
    RegistrationStarted,
    RegistrationStartRequest,
    RegistrationStatus,
    RegistrationVerification,
    VerifyEmailRequest,
)
from app.services.registration_service import RegistrationService


router = APIRouter(prefix="/auth/registration", tags=["Registration"])

RegistrationDep = Annotated[RegistrationService, Depends(get_registration_service)]


@router.post(
    "/start",
    response_model=RegistrationStarted,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(auth_limiter))],
    summary="Start registration and send a verification code",
)
async def start_registration(
    data: RegistrationStartRequest,
    service: RegistrationDep,
    context: ContextDep,
) -> RegistrationStarted:
    """
    **Flow:**
    1. Reject emails that already belong to a completed account (409)
    2. Create or restart the registration flow
    3. Send a verification code (429 while the resend delay runs)
    """
    return await service.start(data.email, context)


@router.post(
    "/verify-email",
    response_model=RegistrationVerification,
    summary="Verify the emailed code",
)
async def verify_email(
    data: VerifyEmailRequest,
    service: RegistrationDep,
) -> RegistrationVerification:
    """A wrong code returns ``success: false`` with the remaining attempts."""
    return await service.verify_email(data.email, data.otp)


@router.post(
    "/complete",
    response_model=RegistrationCompleted,
    status_code=status.HTTP_201_CREATED,
    summary="Create the account",
)
async def complete_registration(
    data: CompleteRegistrationRequest,
    service: RegistrationDep,
) -> RegistrationCompleted:
    return await service.complete(
        email=data.email,
        password=data.password,
        confirm_password=data.confirm_password,
        first_name=data.first_name,
        last_name=data.last_name,
        accept_terms=data.accept_terms,
    )


@router.post("/resend-otp", response_model=OtpResent, summary="Resend the verification code")
async def resend_otp(data: EmailRequest, service: RegistrationDep) -> OtpResent:
    return await service.resend(data.email)


@router.post("/cancel", response_model=MessageResult, summary="Cancel registration")
async def cancel_registration(data: EmailRequest, service: RegistrationDep) -> MessageResult:
    return await service.cancel(data.email)


@router.get(
    "/status",
    response_model=Optional[RegistrationStatus],
    summary="Current registration step, or null when there is no active flow",
)
async def registration_status(
    service: RegistrationDep,
    email: str = Query(..., min_length=3),
) -> Optional[RegistrationStatus]:
    return await service.status(email)
