# init_db.py
import asyncio
import logging

from clinicbook.core.logging import setup_logging
from clinicbook.db.sql import get_engine, init_db

logger = logging.getLogger("init_db")


async def init_models():
    # Drops and recreates every table known to Base.metadata
    engine = get_engine()
    await init_db(engine, drop=True)
    await engine.dispose()

    logger.info("Database schema recreated successfully!")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_models())
