"""
Script to create the resume-search tables in Postgres.
Safe to run repeatedly; every statement is IF NOT EXISTS.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from shared.config import Settings
from src.services.postgres import SCHEMA, apply_schema, create_pool

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_db(database_url: str) -> None:
    """Connect (with retries) and apply the schema."""
    pool = await create_pool(database_url, min_size=1, max_size=2)
    try:
        await apply_schema(pool)
    finally:
        await pool.close()


def main(argv: Optional[list] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Create resume-search tables")
    parser.add_argument("--dry-run", action="store_true", help="Print the DDL without connecting")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    args = parser.parse_args(argv)

    if args.dry_run:
        print(SCHEMA)
        return 0

    database_url = args.database_url or Settings.from_env().database_url
    if not database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    asyncio.run(init_db(database_url))
    print("\nDatabase schema is up to date")
    return 0


if __name__ == "__main__":
    sys.exit(main())
