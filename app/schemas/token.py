"""
Token Schemas

Pydantic models for JWT token handling.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.enums import TokenType


class TokenClaims(BaseModel):
    """Identity claims embedded in both tokens of a pair."""

    user_id: str
    email: str
    role: str
    permissions: List[str] = Field(default_factory=list)
    session_id: Optional[str] = None


class IssuedToken(BaseModel):
    """A signed token with its absolute and relative expiry."""

    token: str
    expires_at: datetime
    expires_in: int  # seconds


class TokenPair(BaseModel):
    """Schema for the token response of login and refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "Bearer"
    session_id: str


class TokenPayload(BaseModel):
    """Schema for a decoded and verified token payload."""

    sub: str  # User ID
    email: Optional[str] = None
    role: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    token_type: TokenType
    session_id: Optional[str] = None
    jti: str
    iat: int
    exp: int  # Expiration timestamp

    @property
    def user_id(self) -> str:
        return self.sub


class TokenVerification(BaseModel):
    """Outcome of verifying a token; never raised, always returned."""

    is_valid: bool
    payload: Optional[TokenPayload] = None
    error: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)
