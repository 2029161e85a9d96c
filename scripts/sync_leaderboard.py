#!/usr/bin/env python3
"""
Leaderboard sync script for scheduled execution.

Walks the ranked leaderboard of every configured region and refreshes
player ratings and leaderboard snapshots.

Usage:
    python scripts/sync_leaderboard.py
    python scripts/sync_leaderboard.py --region Europe --max-rank 500

Cron scheduling (hourly):
    0 * * * * cd /opt/player-sync && /opt/player-sync/venv/bin/python scripts/sync_leaderboard.py >> /tmp/sync_leaderboard.log 2>&1
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

from playersync.core.config import settings
from playersync.core.database import SessionLocal
from playersync.core.logging import configure_logging, get_logger
from playersync.services.stats import DatabaseTokenStore, StatsApiClient
from playersync.services.sync import LeaderboardSync

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


async def sync_leaderboard(regions=None, page_size=None, max_rank=None) -> dict:
    """
    Run the leaderboard job once.

    Returns:
        dict with per-region results
    """
    db = SessionLocal()
    try:
        async with StatsApiClient(DatabaseTokenStore(SessionLocal)) as client:
            job = LeaderboardSync(db, client)
            return await job.run(regions=regions, page_size=page_size, max_rank=max_rank)
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Sync ranked leaderboards")
    parser.add_argument(
        "--region",
        action="append",
        dest="regions",
        help="Region to sync (repeatable, defaults to LEADERBOARD_REGIONS_STR)"
    )
    parser.add_argument("--page-size", type=int, default=None, help="Players per page")
    parser.add_argument("--max-rank", type=int, default=None, help="Stop after this rank")
    args = parser.parse_args()

    result = asyncio.run(sync_leaderboard(args.regions, args.page_size, args.max_rank))

    for region, region_result in result["regions"].items():
        logger.info(
            f"{region}: {region_result['status']} "
            f"({region_result['succeeded']}/{region_result['processed']}, {region_result['failed']} failed)"
        )

    if result["success"]:
        logger.info("Script completed successfully")
        sys.exit(0)
    else:
        logger.error("Script completed with errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
