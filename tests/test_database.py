"""
Database Configuration Unit Tests

Tests for the settings-driven engine options. No connection is opened.
"""

import pytest


class TestDatabaseUrl:
    """Tests for database_url."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (
                "postgresql://u:p@db.example.com:5432/qub?sslmode=require&channel_binding=require",
                "postgresql+asyncpg://u:p@db.example.com:5432/qub",
            ),
            (
                "postgresql+asyncpg://u:p@localhost/qub",
                "postgresql+asyncpg://u:p@localhost/qub",
            ),
        ],
    )
    def test_rewritten_for_asyncpg(self, test_settings, raw, expected):
        """Verify the driver is set and query options are dropped."""
        from app.core.database import database_url

        config = test_settings.model_copy(update={"DATABASE_URL": raw})

        assert database_url(config) == expected


class TestCreateEngine:
    """Tests for create_engine."""

    def test_ssl_only_when_enabled(self, test_settings):
        """Verify TLS connect args follow DATABASE_SSL."""
        import ssl

        from app.core.database import connect_args

        assert connect_args(test_settings.model_copy(update={"DATABASE_SSL": False})) == {}
        enabled = connect_args(test_settings.model_copy(update={"DATABASE_SSL": True}))
        assert isinstance(enabled["ssl"], ssl.SSLContext)

    @pytest.mark.asyncio
    async def test_pool_follows_settings(self, test_settings):
        """Verify the application pool is sized from settings."""
        from app.core.database import create_engine

        config = test_settings.model_copy(
            update={"DATABASE_POOL_SIZE": 3, "DATABASE_MAX_OVERFLOW": 1}
        )
        engine = create_engine(config)

        assert engine.pool.size() == 3
        assert engine.pool._max_overflow == 1
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_migration_engine_does_not_pool(self, test_settings):
        """Verify migration runs use NullPool."""
        from sqlalchemy.pool import NullPool

        from app.core.database import create_engine

        engine = create_engine(test_settings, migrations=True)

        assert isinstance(engine.pool, NullPool)
        await engine.dispose()
