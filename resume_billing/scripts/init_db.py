"""Create the billing schema (``resume-billing-init-db``)."""

import asyncio
import sys

from resume_billing.core.base_model import Base
from resume_billing.core.database import engine
from resume_billing.log.logging import logger
import resume_billing.models  # noqa: F401  registers every table on Base.metadata


async def init_db(drop: bool = False) -> None:
    """Create all tables defined in the models, optionally dropping them first."""
    logger.info("Starting database initialization", event_type="db_init_start",
                tables=list(Base.metadata.tables.keys()))

    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created", event_type="db_tables_created",
                tables=list(Base.metadata.tables.keys()))


def main():
    """Main function to run the database initialization"""
    try:
        asyncio.run(init_db(drop="--drop" in sys.argv[1:]))
    except KeyboardInterrupt:
        logger.info("Database initialization interrupted", event_type="db_init_interrupted")
    except Exception:
        logger.exception("Database initialization error")
        sys.exit(1)


if __name__ == "__main__":
    main()
