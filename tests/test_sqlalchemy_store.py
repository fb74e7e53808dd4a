"""
SQLAlchemy Store Unit Tests

Tests for commit, rollback and row-count handling over a mocked AsyncSession.
"""

from unittest.mock import MagicMock

import pytest


class TestPersist:
    """Tests for writes that add and commit an entity."""

    @pytest.mark.asyncio
    async def test_create_commits(self, mock_async_session):
        """Verify a created record is committed and returned."""
        from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

        store = SqlAlchemyCredentialStore(mock_async_session)
        record = MagicMock()

        assert await store.create_otp(record) is record
        mock_async_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_duplicate(self, mock_async_session):
        """Verify a unique violation rolls back and raises DuplicateRecordError."""
        from sqlalchemy.exc import IntegrityError

        from app.store.base import DuplicateRecordError
        from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

        mock_async_session.commit.side_effect = IntegrityError(
            "INSERT", {}, Exception("uq_otp_codes_active_email_purpose")
        )
        store = SqlAlchemyCredentialStore(mock_async_session)

        with pytest.raises(DuplicateRecordError):
            await store.create_otp(MagicMock())

        mock_async_session.rollback.assert_awaited_once()


class TestBulkStatements:
    """Tests for update/delete statements that report affected rows."""

    @pytest.mark.asyncio
    async def test_invalidate_returns_rowcount(self, mock_async_session):
        """Verify the affected row count is returned after commit."""
        from app.models.enums import OTPPurpose
        from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

        mock_async_session.execute.return_value = MagicMock(rowcount=2)
        store = SqlAlchemyCredentialStore(mock_async_session)

        count = await store.invalidate_otps("a@x.com", OTPPurpose.PASSWORD_RESET, MagicMock())

        assert count == 2
        mock_async_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_flow_reports_missing(self, mock_async_session):
        """Verify deleting a missing flow returns False."""
        from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

        mock_async_session.execute.return_value = MagicMock(rowcount=0)
        store = SqlAlchemyCredentialStore(mock_async_session)

        assert await store.delete_registration_flow("a@x.com") is False

    @pytest.mark.asyncio
    async def test_is_token_revoked(self, mock_async_session):
        """Verify a found jti reports revoked."""
        from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

        result = MagicMock()
        result.scalar_one_or_none.return_value = "abc"
        mock_async_session.execute.return_value = result
        store = SqlAlchemyCredentialStore(mock_async_session)

        assert await store.is_token_revoked("abc") is True


class TestInMemoryStore:
    """Tests for constraints the in-memory store mirrors from the schema."""

    @pytest.mark.asyncio
    async def test_single_unused_otp_per_pair(self, store, clock):
        """Verify a second unused code for a pair is refused."""
        import uuid
        from datetime import timedelta

        from app.models.enums import OTPPurpose
        from app.models.otp_code import OTPCode
        from app.store.base import DuplicateRecordError

        def make():
            return OTPCode(
                id=uuid.uuid4(),
                email="a@x.com",
                code_hash="h",
                purpose=OTPPurpose.PASSWORD_RESET,
                expires_at=clock() + timedelta(minutes=10),
                is_used=False,
                attempts=0,
                max_attempts=3,
                extra_data={},
                created_at=clock(),
            )

        await store.create_otp(make())
        with pytest.raises(DuplicateRecordError):
            await store.create_otp(make())

        await store.invalidate_otps("a@x.com", OTPPurpose.PASSWORD_RESET, clock())
        await store.create_otp(make())
        assert len(store.otps) == 2
