"""
Qub Drive Identity - Schemas Module

Pydantic models for request/response validation.
"""

from app.schemas.user import UserResponse
from app.schemas.token import TokenPair, TokenPayload, RefreshRequest
from app.schemas.auth import (
    LoginRequest,
    LoginResult,
    MessageResult,
    RequestContext,
)

__all__ = [
    # User
    "UserResponse",
    # Token
    "TokenPair",
    "TokenPayload",
    "RefreshRequest",
    # Auth
    "LoginRequest",
    "LoginResult",
    "MessageResult",
    "RequestContext",
]
