"""
Character aggregate sync.

Mirrors the upstream per-character stats into PlayerCharacterRating rows:
- one row per (character, role, gamemode), roles Forward and Goalie
- the "None" gamemode bucket is ignored
- new keys inserted as one batch, existing keys overwritten with full counters
"""
from dataclasses import dataclass
from typing import Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from playersync.core.logging import get_logger
from playersync.repositories import CharacterRatingRepository
from playersync.repositories.character_rating_repository import COUNTER_FIELDS, CharacterKey
from playersync.services.stats.schemas import NO_GAMEMODE, ROLES, PlayerStatsDoc

logger = get_logger(__name__)


@dataclass
class AggregateSyncResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"inserted": self.inserted, "updated": self.updated, "skipped": self.skipped}


def collect_aggregates(player_id: str, stats: PlayerStatsDoc) -> Dict[CharacterKey, dict]:
    """Flatten a stats document into counters keyed by the aggregate tuple. Later duplicates win."""
    aggregates: Dict[CharacterKey, dict] = {}
    for stat in stats.character_stats:
        if stat.rating_name == NO_GAMEMODE:
            continue
        for role in ROLES:
            role_stats = stat.role_stats[role]
            key = (player_id, stat.character_id, role, stat.rating_name)
            aggregates[key] = {field: getattr(role_stats, field) for field in COUNTER_FIELDS}
    return aggregates


class CharacterAggregateSync:
    """Writes a player's character aggregates from a stats document."""

    def __init__(self, db: Session):
        self.db = db
        self.repository = CharacterRatingRepository(db)

    def sync(self, player_id: str, stats: PlayerStatsDoc) -> AggregateSyncResult:
        """
        Upsert every aggregate in the document.

        Args:
            player_id: Owner of the aggregates
            stats: Parsed stats document (malformed items already dropped)

        Returns:
            Counts of inserted, updated and skipped rows
        """
        result = AggregateSyncResult(skipped=stats.skipped)
        aggregates = collect_aggregates(player_id, stats)
        existing = self.repository.existing_keys(player_id)

        inserts = []
        for key, counters in aggregates.items():
            if key in existing:
                self.repository.replace_counters(key, counters)
                result.updated += 1
            else:
                _, character, role, gamemode = key
                inserts.append({
                    "player_id": player_id,
                    "character": character,
                    "role": role,
                    "gamemode": gamemode,
                    **counters,
                })

        if inserts:
            try:
                with self.db.begin_nested():
                    self.repository.insert_batch(inserts)
                result.inserted += len(inserts)
            except IntegrityError:
                # Another resolution inserted some of these keys first
                logger.info(f"Batch insert raced for {player_id}, falling back to per-key upsert")
                for row in inserts:
                    key = (player_id, row["character"], row["role"], row["gamemode"])
                    if self.repository.upsert(key, row):
                        result.inserted += 1
                    else:
                        result.updated += 1

        logger.debug(
            f"Character aggregates for {player_id}: "
            f"{result.inserted} inserted, {result.updated} updated, {result.skipped} skipped"
        )
        return result
