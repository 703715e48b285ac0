"""Database reset script.

Drops the template and generation tables and recreates them. Stored
files under the storage root are left in place.

Usage:
    python -m scripts.reset_db
    or
    python scripts/reset_db.py (after pip install -e .)
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from docsynth.core.config import get_settings
from docsynth.core.logging_config import setup_logging
from docsynth.db.session import close_db, drop_all_tables, get_engine, init_db


async def main() -> None:
    """Reset the database by dropping all tables and reinitializing."""
    settings = get_settings()
    setup_logging(settings)

    try:
        print("Dropping all database tables...")
        await drop_all_tables(get_engine(settings))

        print("Recreating tables...")
        await init_db(settings)
    finally:
        await close_db()
    print("Database reset successfully!")


if __name__ == "__main__":
    asyncio.run(main())
