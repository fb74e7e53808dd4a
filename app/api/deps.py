"""
API Dependencies

Reusable dependencies for API routes: store, services, request context and
authentication.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import InvalidToken
from app.middleware.rate_limit import client_ip
from app.models.user import User
from app.schemas.auth import RequestContext
from app.schemas.token import TokenPayload
from app.services.auth_service import AuthService
from app.services.email_service import EmailNotifier, Notifier
from app.services.otp_service import OtpService
from app.services.password_reset_service import PasswordResetService
from app.services.registration_service import RegistrationService
from app.store.base import CredentialStore
from app.store.sqlalchemy_store import SqlAlchemyCredentialStore


# OAuth2 scheme for token extraction from Authorization header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


# ============== Infrastructure ==============

async def get_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AsyncGenerator[CredentialStore, None]:
    """Credential store bound to the request's database session."""
    yield SqlAlchemyCredentialStore(db)


def get_notifier() -> Notifier:
    return EmailNotifier()


def get_request_context(request: Request) -> RequestContext:
    """User agent and client IP of the current request."""
    return RequestContext(
        user_agent=request.headers.get("User-Agent"),
        ip_address=client_ip(request),
    )


StoreDep = Annotated[CredentialStore, Depends(get_store)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]
ContextDep = Annotated[RequestContext, Depends(get_request_context)]


# ============== Services ==============

def get_otp_service(store: StoreDep, notifier: NotifierDep) -> OtpService:
    return OtpService(store, notifier)


def get_registration_service(
    store: StoreDep,
    notifier: NotifierDep,
    otp_service: Annotated[OtpService, Depends(get_otp_service)],
) -> RegistrationService:
    return RegistrationService(store, otp_service, notifier)


def get_password_reset_service(
    store: StoreDep,
    notifier: NotifierDep,
    otp_service: Annotated[OtpService, Depends(get_otp_service)],
) -> PasswordResetService:
    return PasswordResetService(store, otp_service, notifier)


def get_auth_service(store: StoreDep, notifier: NotifierDep) -> AuthService:
    return AuthService(store, notifier)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


# ============== Authentication ==============

async def get_token_payload(
    token: Annotated[str, Depends(oauth2_scheme)],
    auth_service: AuthServiceDep,
) -> TokenPayload:
    """
    Dependency to validate the bearer access token.

    Raises:
        InvalidToken: 401 if the token, its session or its user is no longer valid.
    """
    return await auth_service.authenticate(token)


async def get_current_user(
    payload: Annotated[TokenPayload, Depends(get_token_payload)],
    auth_service: AuthServiceDep,
) -> User:
    """
    Dependency to get the current authenticated user.

    Returns:
        User: The authenticated, active user.
    """
    user = await auth_service.get_user(payload.user_id)
    if user is None:
        raise InvalidToken("User not found or inactive")
    return user
