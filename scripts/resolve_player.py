#!/usr/bin/env python3
"""
Resolve one player against the stats service and print the result.

Usage:
    python scripts/resolve_player.py --username Nova
    python scripts/resolve_player.py --player-id 5f1c... --region Europe
    python scripts/resolve_player.py --username Nova --trust-cache
"""
import argparse
import asyncio
import json
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
from playersync.services.sync import PlayerSyncOrchestrator

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


async def resolve_player(username=None, player_id=None, region=None, trust_cache=False) -> dict:
    """
    Run one player sync.

    Returns:
        The result dict
    """
    db = SessionLocal()
    try:
        async with StatsApiClient(DatabaseTokenStore(SessionLocal)) as client:
            orchestrator = PlayerSyncOrchestrator(db, client)
            result = await orchestrator.sync_player(
                username=username,
                player_id=player_id,
                region=region,
                trust_cache=trust_cache,
            )
            return result.to_dict()
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Resolve and sync a single player")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--username", help="Username to resolve (case-insensitive)")
    group.add_argument("--player-id", help="Remote player id to resolve")
    parser.add_argument("--region", help="Region to check the ranking in")
    parser.add_argument(
        "--trust-cache",
        action="store_true",
        help="Return a cached player without contacting the stats service"
    )
    args = parser.parse_args()

    result = asyncio.run(resolve_player(args.username, args.player_id, args.region, args.trust_cache))
    print(json.dumps(result, indent=2, default=str))

    sys.exit(0 if result["success"] else 1)


if __name__ == "__main__":
    main()
