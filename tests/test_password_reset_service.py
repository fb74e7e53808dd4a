"""
Password Reset Service Unit Tests

Tests for the forgot-password flow.
"""

import pytest


EMAIL = "user@example.com"
NEW_PASSWORD = "BrandNew123!"


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestRequest:
    """Tests for PasswordResetService.request."""

    @pytest.mark.asyncio
    async def test_same_response_for_unknown_inactive_and_active(
        self, password_reset_service, make_user, notifier
    ):
        """Verify the response never reveals whether an account exists."""
        from app.services.password_reset_service import GENERIC_REQUEST_MESSAGE

        await make_user(EMAIL)
        await make_user("inactive@example.com", is_active=False)

        unknown = await password_reset_service.request("ghost@example.com")
        inactive = await password_reset_service.request("inactive@example.com")
        active = await password_reset_service.request(EMAIL)

        assert unknown.message == inactive.message == active.message == GENERIC_REQUEST_MESSAGE
        assert [sent["email"] for sent in notifier.otps] == [EMAIL]

    @pytest.mark.asyncio
    async def test_request_creates_flow_and_logs_event(
        self, password_reset_service, make_user, store, clock
    ):
        """Verify an active account gets a one hour flow and an audit record."""
        from datetime import timedelta

        user = await make_user(EMAIL)
        await password_reset_service.request(EMAIL)

        flow = store.reset_flows[EMAIL]
        assert flow.is_active is True
        assert flow.expires_at == clock() + timedelta(hours=1)

        event = store.security_events[-1]
        assert event.event_type == "PASSWORD_CHANGE"
        assert event.user_id == user.id
        assert event.extra_data["action"] == "password_reset_requested"

    @pytest.mark.asyncio
    async def test_repeat_request_refreshes_flow_in_place(
        self, password_reset_service, make_user, store, clock
    ):
        """Verify a second request keeps the flow id and extends its expiry."""
        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        first = store.reset_flows[EMAIL]
        first_id, first_expiry = first.id, first.expires_at

        clock.advance(minutes=5)
        await password_reset_service.request(EMAIL)

        flow = store.reset_flows[EMAIL]
        assert flow.id == first_id
        assert flow.expires_at > first_expiry

    @pytest.mark.asyncio
    async def test_rate_limited_request_still_answers_generically(
        self, password_reset_service, make_user, notifier
    ):
        """Verify throttling is not surfaced to the caller."""
        from app.services.password_reset_service import GENERIC_REQUEST_MESSAGE

        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        second = await password_reset_service.request(EMAIL)

        assert second.message == GENERIC_REQUEST_MESSAGE
        assert len(notifier.otps) == 1

    @pytest.mark.asyncio
    async def test_email_is_required(self, password_reset_service):
        """Verify a blank email is rejected."""
        from app.core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await password_reset_service.request("   ")


class TestVerifyAndReset:
    """Tests for verify_otp_only and reset_with_otp."""

    @pytest.mark.asyncio
    async def test_reset_scenario(self, password_reset_service, make_user, store, notifier, auth_service):
        """Verify a reset changes the password and ends every session."""
        from app.core.security import verify_password

        user = await make_user(EMAIL, password="OldPassword1!")
        await auth_service.login(EMAIL, "OldPassword1!")
        await auth_service.login(EMAIL, "OldPassword1!")

        await password_reset_service.request(EMAIL)
        result = await password_reset_service.reset_with_otp(
            EMAIL, notifier.last_code(EMAIL), NEW_PASSWORD, NEW_PASSWORD
        )

        assert result.success is True
        assert verify_password(NEW_PASSWORD, user.password_hash)
        assert store.reset_flows[EMAIL].is_active is False
        assert not any(session.is_active for session in store.sessions.values())
        assert notifier.alerts[-1]["sessions_revoked"] == 2
        assert store.security_events[-1].extra_data["action"] == "password_reset_completed"

    @pytest.mark.asyncio
    async def test_verify_only_then_reset_with_same_code(
        self, password_reset_service, make_user, notifier
    ):
        """Verify a pre-checked code is accepted once more by reset."""
        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        code = notifier.last_code(EMAIL)

        checked = await password_reset_service.verify_otp_only(EMAIL, code)
        result = await password_reset_service.reset_with_otp(
            EMAIL, code, NEW_PASSWORD, NEW_PASSWORD
        )

        assert checked.success is True
        assert checked.valid_for == 60
        assert result.success is True

    @pytest.mark.asyncio
    async def test_verify_only_wrong_code(self, password_reset_service, make_user, notifier):
        """Verify a wrong code returns the engine's message."""
        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)

        result = await password_reset_service.verify_otp_only(
            EMAIL, _wrong(notifier.last_code(EMAIL))
        )

        assert result.success is False
        assert result.message == "Invalid OTP. 2 attempts remaining."

    @pytest.mark.asyncio
    async def test_verify_only_without_flow(self, password_reset_service):
        """Verify a missing flow is reported as a failed result."""
        result = await password_reset_service.verify_otp_only(EMAIL, "123456")

        assert result.success is False
        assert result.message == "Invalid or expired password reset request"

    @pytest.mark.asyncio
    async def test_reset_with_wrong_code_keeps_password(
        self, password_reset_service, make_user, notifier
    ):
        """Verify a wrong code reports failure without changing anything."""
        from app.core.security import verify_password

        user = await make_user(EMAIL, password="OldPassword1!")
        await password_reset_service.request(EMAIL)

        result = await password_reset_service.reset_with_otp(
            EMAIL, _wrong(notifier.last_code(EMAIL)), NEW_PASSWORD, NEW_PASSWORD
        )

        assert result.success is False
        assert verify_password("OldPassword1!", user.password_hash)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "new_password,confirm,message",
        [
            ("BrandNew123!", "Different123!", "Passwords do not match"),
            ("short", "short", "Password must be at least 8 characters long"),
        ],
    )
    async def test_reset_validation(self, password_reset_service, new_password, confirm, message):
        """Verify password checks run before the flow is looked up."""
        from app.core.exceptions import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            await password_reset_service.reset_with_otp(EMAIL, "123456", new_password, confirm)

        assert exc_info.value.message == message

    @pytest.mark.asyncio
    async def test_reset_without_flow(self, password_reset_service, make_user):
        """Verify reset without a request raises InvalidOrExpired."""
        from app.core.exceptions import InvalidOrExpired

        await make_user(EMAIL)

        with pytest.raises(InvalidOrExpired):
            await password_reset_service.reset_with_otp(EMAIL, "123456", NEW_PASSWORD, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_after_flow_expired(
        self, password_reset_service, make_user, notifier, clock
    ):
        """Verify an expired flow cannot be used."""
        from app.core.exceptions import InvalidOrExpired

        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        code = notifier.last_code(EMAIL)
        clock.advance(hours=1, seconds=1)

        with pytest.raises(InvalidOrExpired):
            await password_reset_service.reset_with_otp(EMAIL, code, NEW_PASSWORD, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_for_deactivated_user(
        self, password_reset_service, make_user, notifier
    ):
        """Verify a user deactivated mid-flow cannot finish the reset."""
        from app.core.exceptions import InvalidOrExpired

        user = await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        user.is_active = False

        with pytest.raises(InvalidOrExpired):
            await password_reset_service.reset_with_otp(
                EMAIL, notifier.last_code(EMAIL), NEW_PASSWORD, NEW_PASSWORD
            )


class TestResendCancelStatus:
    """Tests for resend, cancel, status and cleanup."""

    @pytest.mark.asyncio
    async def test_resend_requires_active_flow(self, password_reset_service):
        """Verify resend without a flow raises InvalidOrExpired."""
        from app.core.exceptions import InvalidOrExpired

        with pytest.raises(InvalidOrExpired) as exc_info:
            await password_reset_service.resend(EMAIL)

        assert exc_info.value.message == "No active password reset request found"

    @pytest.mark.asyncio
    async def test_resend_after_delay(self, password_reset_service, make_user, notifier, clock):
        """Verify resend issues a fresh code once the delay passed."""
        from app.core.exceptions import RateLimited

        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)

        with pytest.raises(RateLimited):
            await password_reset_service.resend(EMAIL)

        clock.advance(seconds=61)
        resent = await password_reset_service.resend(EMAIL)

        assert resent.message == "Password reset code resent to your email"
        assert len(notifier.otps) == 2

    @pytest.mark.asyncio
    async def test_resend_discards_previously_verified_code(
        self, password_reset_service, make_user, store, notifier, clock
    ):
        """Verify a code checked before a resend no longer resets the password."""
        from app.core.security import verify_password

        user = await make_user(EMAIL, password="OldPassword1!")
        await password_reset_service.request(EMAIL)
        old_code = notifier.last_code(EMAIL)
        checked = await password_reset_service.verify_otp_only(EMAIL, old_code)

        clock.advance(seconds=61)
        await password_reset_service.resend(EMAIL)
        result = await password_reset_service.reset_with_otp(
            EMAIL, old_code, NEW_PASSWORD, NEW_PASSWORD
        )

        assert checked.success is True
        assert store.reset_flows[EMAIL].verified_code_hash is None
        assert result.success is False
        assert verify_password("OldPassword1!", user.password_hash)

    @pytest.mark.asyncio
    async def test_cancel_deactivates_flow(self, password_reset_service, make_user, store):
        """Verify cancel is idempotent and burns the code."""
        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)

        await password_reset_service.cancel(EMAIL)
        again = await password_reset_service.cancel(EMAIL)

        assert again.message == "Password reset cancelled successfully"
        assert store.reset_flows[EMAIL].is_active is False
        assert all(otp.is_used for otp in store.otps.values())
        assert await password_reset_service.status(EMAIL) is None

    @pytest.mark.asyncio
    async def test_status(self, password_reset_service, make_user):
        """Verify status reports the active flow and its code."""
        await make_user(EMAIL)
        assert await password_reset_service.status(EMAIL) is None

        await password_reset_service.request(EMAIL)
        status = await password_reset_service.status(EMAIL)

        assert status.is_active is True
        assert status.otp.has_active_otp is True

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_and_old_inactive(
        self, password_reset_service, make_user, store, clock
    ):
        """Verify cleanup keeps live flows and removes stale ones."""
        await make_user(EMAIL)
        await password_reset_service.request(EMAIL)
        assert await password_reset_service.cleanup_expired() == 0

        clock.advance(hours=2)
        assert await password_reset_service.cleanup_expired() == 1
        assert store.reset_flows == {}
