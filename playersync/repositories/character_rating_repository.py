"""
Character aggregate repository.

Rows are keyed by (player_id, character, role, gamemode) and always written
with full counter values.
"""
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from playersync.models import PlayerCharacterRating
from playersync.repositories.base import BaseRepository
from playersync.utils.time import utc_now

CharacterKey = Tuple[str, str, str, str]

COUNTER_FIELDS = ("games", "wins", "losses", "scores", "assists", "saves", "knockouts", "mvp")


class CharacterRatingRepository(BaseRepository[PlayerCharacterRating]):
    """Repository for PlayerCharacterRating aggregates."""

    def __init__(self, db: Session):
        super().__init__(PlayerCharacterRating, db)

    def existing_keys(self, player_id: str) -> Dict[CharacterKey, PlayerCharacterRating]:
        rows = self.where(PlayerCharacterRating.player_id == player_id)
        return {row.key: row for row in rows}

    def insert_batch(self, rows: List[dict]) -> List[PlayerCharacterRating]:
        """Insert new aggregates and flush so key collisions surface here."""
        instances = self.create_many(rows)
        self.flush()
        return instances

    def replace_counters(self, key: CharacterKey, counters: dict) -> int:
        """
        Overwrite every counter on the row matching key.

        Returns:
            Number of rows updated (0 when the key does not exist)
        """
        player_id, character, role, gamemode = key
        values = {field: counters.get(field, 0) for field in COUNTER_FIELDS}
        values["updated_at"] = utc_now()
        return self.query().filter(
            PlayerCharacterRating.player_id == player_id,
            PlayerCharacterRating.character == character,
            PlayerCharacterRating.role == role,
            PlayerCharacterRating.gamemode == gamemode,
        ).update(values, synchronize_session="fetch")

    def upsert(self, key: CharacterKey, counters: dict) -> bool:
        """
        Replace counters for key, inserting the row if it does not exist.

        Returns:
            True if a row was inserted
        """
        if self.replace_counters(key, counters):
            return False
        player_id, character, role, gamemode = key
        self.create(
            player_id=player_id,
            character=character,
            role=role,
            gamemode=gamemode,
            **{field: counters.get(field, 0) for field in COUNTER_FIELDS},
        )
        self.flush()
        return True
