"""Database initialization script.

Run this script to create the database tables and storage directories.

Usage:
    python -m scripts.init_db
    or
    python scripts/init_db.py (after pip install -e .)
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from docsynth.core.config import get_settings
from docsynth.core.logging_config import setup_logging
from docsynth.db.session import close_db, init_db


async def main() -> None:
    """Initialize the database."""
    settings = get_settings()
    setup_logging(settings)
    try:
        await init_db(settings)
    finally:
        await close_db()
    print(f"Database initialized successfully! Storage root: {settings.storage_dir}")


if __name__ == "__main__":
    asyncio.run(main())
