#!/usr/bin/env python3
"""Initialize database tables."""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger

from levelnet.config.database import create_engine, init_db
from levelnet.config.logging import setup_logging


async def init_database(database_url: str | None = None) -> None:
    """Create all database tables."""
    logger.info("Connecting to database...")
    engine = create_engine(database_url)

    try:
        await init_db(engine)
    finally:
        await engine.dispose()

    logger.success("Database tables created successfully!")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
