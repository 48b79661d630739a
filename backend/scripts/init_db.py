"""
Initialize the database: create all tables and the bootstrap superadmin
(BOOTSTRAP_ADMIN_USERNAME / BOOTSTRAP_ADMIN_PASSWORD).
Run with: python -m scripts.init_db
"""

import asyncio

import structlog

from medbill.database import engine, Base, async_session
from medbill.logging_config import configure_logging
from medbill.services.auth_service import auth_service
import medbill.models  # noqa: F401

logger = structlog.get_logger("scripts.init_db")


async def init():
    logger.info("db.init.start")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        admin = await auth_service.ensure_bootstrap_admin(session)
        await session.commit()
    logger.info("db.init.done", bootstrap_admin=admin.username if admin else None)
    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init())
