"""
Security Utilities Unit Tests

Tests for password hashing and JWT issue/verify.
"""

import pytest


def _claims(**overrides):
    from app.schemas.token import TokenClaims

    values = dict(
        user_id="5b1f7c4e-0000-4000-8000-000000000001",
        email="user@example.com",
        role="user",
        permissions=["user:read"],
        session_id="5b1f7c4e-0000-4000-8000-0000000000aa",
    )
    values.update(overrides)
    return TokenClaims(**values)


class TestPasswords:
    """Tests for bcrypt helpers."""

    def test_hash_and_verify(self):
        """Verify a hash matches only its own password."""
        from app.core.security import hash_password, verify_password

        hashed = hash_password("Password123!", 4)

        assert hashed != "Password123!"
        assert verify_password("Password123!", hashed) is True
        assert verify_password("password123!", hashed) is False

    def test_malformed_hash_is_a_mismatch(self):
        """Verify a corrupt stored hash does not raise."""
        from app.core.security import verify_password

        assert verify_password("Password123!", "not-a-bcrypt-hash") is False


class TestTokens:
    """Tests for access and refresh tokens."""

    def test_pair_round_trip(self, test_settings):
        """Verify both tokens carry the identity claims and distinct ids."""
        from app.core.security import generate_token_pair, verify_access_token, verify_refresh_token

        access, refresh = generate_token_pair(_claims(), test_settings)

        access_payload = verify_access_token(access.token, test_settings).payload
        refresh_payload = verify_refresh_token(refresh.token, test_settings).payload

        assert access.expires_in == test_settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        assert refresh.expires_in == test_settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400
        assert access_payload.user_id == refresh_payload.user_id == _claims().user_id
        assert access_payload.session_id == _claims().session_id
        assert access_payload.jti != refresh_payload.jti

    def test_wrong_type_is_rejected(self, test_settings):
        """Verify each verifier refuses the other kind of token."""
        from app.core.security import generate_token_pair, verify_access_token, verify_refresh_token

        access, refresh = generate_token_pair(_claims(), test_settings)

        assert verify_refresh_token(access.token, test_settings).error == "Invalid token type"
        assert verify_access_token(refresh.token, test_settings).error == "Invalid token type"

    def test_expired_token(self, test_settings):
        """Verify an expired token reports why it failed."""
        from app.core.security import generate_access_token, verify_access_token

        expired_settings = test_settings.model_copy(update={"ACCESS_TOKEN_EXPIRE_MINUTES": -1})
        issued = generate_access_token(_claims(), expired_settings)

        result = verify_access_token(issued.token, test_settings)

        assert result.is_valid is False
        assert result.error == "Token has expired"

    def test_tampered_signature(self, test_settings):
        """Verify a token signed with another secret is invalid."""
        from app.core.security import generate_access_token, verify_access_token

        other = test_settings.model_copy(update={"SECRET_KEY": "some-other-secret"})
        issued = generate_access_token(_claims(), other)

        assert verify_access_token(issued.token, test_settings).error == "Invalid token"

    @pytest.mark.parametrize("token,error", [("", "Token is required"), ("garbage", "Invalid token")])
    def test_unreadable_tokens(self, test_settings, token, error):
        """Verify empty and garbage input are reported, not raised."""
        from app.core.security import verify_access_token

        result = verify_access_token(token, test_settings)

        assert result.is_valid is False
        assert result.error == error

    def test_missing_user_id(self, test_settings):
        """Verify a token cannot be issued without a subject."""
        from app.core.exceptions import TokenGenerationError
        from app.core.security import generate_access_token

        with pytest.raises(TokenGenerationError):
            generate_access_token(_claims(user_id=""), test_settings)


class TestDecodeSigned:
    """Tests for decode_signed."""

    def test_accepts_expired_but_genuine_token(self, test_settings):
        """Verify an expired token with a valid signature is still readable."""
        from app.core.security import decode_signed, generate_access_token

        expired_settings = test_settings.model_copy(update={"ACCESS_TOKEN_EXPIRE_MINUTES": -1})
        issued = generate_access_token(_claims(), expired_settings)

        claims = decode_signed(issued.token, test_settings)

        assert claims["sub"] == _claims().user_id

    def test_rejects_foreign_signature(self, test_settings):
        """Verify a token signed with another secret yields None."""
        from app.core.security import decode_signed, generate_refresh_token

        other = test_settings.model_copy(update={"REFRESH_SECRET_KEY": "some-other-secret"})
        issued = generate_refresh_token(_claims(), other)

        assert decode_signed(issued.token, test_settings) is None
        assert decode_signed("garbage", test_settings) is None
