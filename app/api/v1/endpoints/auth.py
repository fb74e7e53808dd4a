"""
Authentication Routes

Login, token refresh, logout, current user and session management.
"""

import uuid
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import (
    AuthServiceDep,
    ContextDep,
    get_current_user,
    get_token_payload,
    oauth2_scheme,
)
from app.middleware.rate_limit import auth_limiter, rate_limit
from app.models.user import User
from app.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResult,
    MessageResult,
    SessionResponse,
)
from app.schemas.token import RefreshRequest, TokenPair, TokenPayload
from app.schemas.user import UserResponse


router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=LoginResult,
    dependencies=[Depends(rate_limit(auth_limiter))],
    summary="Login and receive a token pair",
)
async def login(
    data: LoginRequest,
    auth_service: AuthServiceDep,
    context: ContextDep,
) -> LoginResult:
    """
    Authenticate with email and password.

    **Flow:**
    1. Reject locked accounts (423 with Retry-After)
    2. Verify credentials; failures count towards the lockout (401)
    3. Reject deactivated accounts (403)
    4. Open a session and return access + refresh tokens
    """
    return await auth_service.login(data.email, data.password, context)


@router.post("/refresh", response_model=TokenPair, summary="Rotate the refresh token")
async def refresh(
    data: RefreshRequest,
    auth_service: AuthServiceDep,
    context: ContextDep,
) -> TokenPair:
    return await auth_service.refresh(data.refresh_token, context)


@router.post("/logout", response_model=MessageResult, summary="End the current session")
async def logout(
    token: Annotated[str, Depends(oauth2_scheme)],
    auth_service: AuthServiceDep,
) -> MessageResult:
    """Always succeeds, even for expired or unknown tokens."""
    await auth_service.logout(token)
    return MessageResult(message="Logged out successfully")


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    return current_user


@router.post("/change-password", response_model=MessageResult)
async def change_password(
    data: ChangePasswordRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    auth_service: AuthServiceDep,
) -> MessageResult:
    await auth_service.change_password(
        current_user.id,
        data.current_password,
        data.new_password,
        data.confirm_password,
    )
    return MessageResult(message="Password changed successfully")


@router.get("/sessions", response_model=List[SessionResponse], summary="List active sessions")
async def list_sessions(
    payload: Annotated[TokenPayload, Depends(get_token_payload)],
    current_user: Annotated[User, Depends(get_current_user)],
    auth_service: AuthServiceDep,
) -> List[SessionResponse]:
    sessions = await auth_service.list_active_sessions(current_user.id)
    return [
        SessionResponse(
            id=session.id,
            device_info=session.device_info or {},
            created_at=session.created_at,
            last_accessed_at=session.last_accessed_at,
            expires_at=session.expires_at,
            is_current=str(session.id) == payload.session_id,
        )
        for session in sessions
    ]


@router.delete("/sessions/{session_id}", response_model=MessageResult)
async def revoke_session(
    session_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    auth_service: AuthServiceDep,
) -> MessageResult:
    if not await auth_service.revoke_session(session_id, user_id=current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return MessageResult(message="Session revoked")


@router.post("/sessions/revoke-all", response_model=MessageResult)
async def revoke_all_sessions(
    current_user: Annotated[User, Depends(get_current_user)],
    auth_service: AuthServiceDep,
) -> MessageResult:
    count = await auth_service.revoke_all_sessions(current_user.id)
    return MessageResult(message=f"Revoked {count} sessions")
