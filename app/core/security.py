"""
Security Utilities

Password hashing, opaque-value digests and JWT token management.

Access and refresh tokens are signed with distinct secrets and carry a
``token_type`` claim; a token is only ever accepted for the use it was
issued for.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings, settings
from app.core.exceptions import TokenGenerationError
from app.models.enums import TokenType
from app.schemas.token import (
    IssuedToken,
    TokenClaims,
    TokenPayload,
    TokenVerification,
)


# ============== Passwords ==============

def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a plain text password using bcrypt.

    Args:
        password: Plain text password to hash.
        rounds: bcrypt cost factor, defaults to BCRYPT_ROUNDS.

    Returns:
        str: Hashed password.
    """
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain text password against a hashed password.

    Returns:
        bool: True if passwords match, False otherwise (including malformed hashes).
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


def hash_token(value: str) -> str:
    """SHA-256 digest used for OTP codes and refresh tokens at rest."""
    return hashlib.sha256(value.encode()).hexdigest()


# ============== JWT ==============

def _secret_for(token_type: TokenType, config: Settings) -> str:
    if token_type is TokenType.REFRESH:
        return config.REFRESH_SECRET_KEY
    return config.SECRET_KEY


def _lifetime_for(token_type: TokenType, config: Settings) -> timedelta:
    if token_type is TokenType.REFRESH:
        return timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
    return timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)


def _issue_token(
    claims: TokenClaims,
    token_type: TokenType,
    config: Optional[Settings],
) -> IssuedToken:
    config = config or settings
    if not claims.user_id:
        raise TokenGenerationError(
            f"User ID is required for {token_type.value} token"
        )

    now = datetime.now(timezone.utc)
    lifetime = _lifetime_for(token_type, config)
    expires_at = now + lifetime

    to_encode = {
        "sub": str(claims.user_id),
        "email": claims.email,
        "role": claims.role,
        "permissions": list(claims.permissions),
        "token_type": token_type.value,
        "session_id": claims.session_id,
        "jti": uuid.uuid4().hex,
        "iss": config.JWT_ISSUER,
        "aud": config.JWT_AUDIENCE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }

    try:
        encoded = jwt.encode(
            to_encode,
            _secret_for(token_type, config),
            algorithm=config.ALGORITHM,
        )
    except JWTError as e:
        raise TokenGenerationError(f"Failed to generate {token_type.value} token: {e}")

    return IssuedToken(
        token=encoded,
        expires_at=expires_at,
        expires_in=int(lifetime.total_seconds()),
    )


def generate_access_token(
    claims: TokenClaims, config: Optional[Settings] = None
) -> IssuedToken:
    """Create a short-lived access token."""
    return _issue_token(claims, TokenType.ACCESS, config)


def generate_refresh_token(
    claims: TokenClaims, config: Optional[Settings] = None
) -> IssuedToken:
    """Create a long-lived refresh token bound to the same session."""
    return _issue_token(claims, TokenType.REFRESH, config)


def generate_token_pair(
    claims: TokenClaims, config: Optional[Settings] = None
) -> tuple[IssuedToken, IssuedToken]:
    return (
        generate_access_token(claims, config),
        generate_refresh_token(claims, config),
    )


def _verify_token(
    token: str,
    expected: TokenType,
    config: Optional[Settings],
) -> TokenVerification:
    config = config or settings
    if not token:
        return TokenVerification(is_valid=False, error="Token is required")

    # The type claim is checked before the signature so that a token of the
    # other kind is reported as such rather than as a bad signature.
    unverified = decode_unverified(token)
    if unverified is None:
        return TokenVerification(is_valid=False, error="Invalid token")
    if unverified.get("token_type") != expected.value:
        return TokenVerification(is_valid=False, error="Invalid token type")

    try:
        decoded = jwt.decode(
            token,
            _secret_for(expected, config),
            algorithms=[config.ALGORITHM],
            audience=config.JWT_AUDIENCE,
            issuer=config.JWT_ISSUER,
        )
    except ExpiredSignatureError:
        return TokenVerification(is_valid=False, error="Token has expired")
    except JWTError:
        return TokenVerification(is_valid=False, error="Invalid token")

    try:
        payload = TokenPayload.model_validate(decoded)
    except PydanticValidationError:
        return TokenVerification(is_valid=False, error="Invalid token")

    return TokenVerification(is_valid=True, payload=payload)


def verify_access_token(
    token: str, config: Optional[Settings] = None
) -> TokenVerification:
    """
    Verify an access token.

    Returns:
        TokenVerification: ``is_valid`` with the payload, or the reason it failed.
    """
    return _verify_token(token, TokenType.ACCESS, config)


def verify_refresh_token(
    token: str, config: Optional[Settings] = None
) -> TokenVerification:
    """Verify a refresh token. Access tokens are rejected with "Invalid token type"."""
    return _verify_token(token, TokenType.REFRESH, config)


def decode_signed(
    token: str, config: Optional[Settings] = None
) -> Optional[Dict[str, Any]]:
    """
    Claims of a token whose signature, issuer and audience check out, even if
    it has already expired. None for forged or unreadable tokens.
    """
    config = config or settings
    unverified = decode_unverified(token or "")
    if unverified is None:
        return None
    try:
        token_type = TokenType(unverified.get("token_type"))
    except ValueError:
        return None

    try:
        return jwt.decode(
            token,
            _secret_for(token_type, config),
            algorithms=[config.ALGORITHM],
            audience=config.JWT_AUDIENCE,
            issuer=config.JWT_ISSUER,
            options={"verify_exp": False},
        )
    except JWTError:
        return None


def decode_unverified(token: str) -> Optional[Dict[str, Any]]:
    """Read claims without checking signature or expiry. None for garbage input."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None
