#!/usr/bin/env python3
"""
Initialize database tables from SQLAlchemy models.

Usage:
    python scripts/init_database.py
"""
import sys
from pathlib import Path

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

from playersync.core.config import settings
from playersync.core.logging import configure_logging, get_logger

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


def main():
    """Create all database tables from models."""
    from playersync.core.database import init_db, DATABASE_URL

    logger.info(f"Creating database tables on {DATABASE_URL.split('@')[-1]}...")
    init_db()
    logger.info("All database tables created")


if __name__ == "__main__":
    main()
