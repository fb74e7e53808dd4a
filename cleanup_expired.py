"""Purge expired OTP codes, registration/reset flows and revoked tokens."""

import asyncio
import logging

from app.core.config import settings
from app.core.database import close_db, get_session_maker
from app.services.maintenance import run_cleanup
from app.store.sqlalchemy_store import SqlAlchemyCredentialStore


async def main():
    logging.basicConfig(level=settings.LOG_LEVEL)
    async_session = get_session_maker()
    try:
        async with async_session() as db:
            report = await run_cleanup(SqlAlchemyCredentialStore(db))
    finally:
        await close_db()

    for task, count in report.items():
        print(f"  - {task}: {count}")


if __name__ == "__main__":
    asyncio.run(main())
