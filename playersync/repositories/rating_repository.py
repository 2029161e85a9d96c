"""
Rating snapshot and long-term rating log repositories.
"""
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from playersync.models import PlayerRating, RatingHistory
from playersync.repositories.base import BaseRepository
from playersync.utils.time import utc_now

# Fields copied when a snapshot moves between players
SNAPSHOT_FIELDS = ("rating", "rank", "games", "wins", "losses", "mastery_level", "created_at")


class RatingRepository(BaseRepository[PlayerRating]):
    """Repository for PlayerRating snapshots."""

    def __init__(self, db: Session):
        super().__init__(PlayerRating, db)

    def latest(self, player_id: str) -> Optional[PlayerRating]:
        return self.query().filter(
            PlayerRating.player_id == player_id
        ).order_by(PlayerRating.created_at.desc()).first()

    def for_player(self, player_id: str) -> List[PlayerRating]:
        """All snapshots for a player, newest first."""
        return self.query().filter(
            PlayerRating.player_id == player_id
        ).order_by(PlayerRating.created_at.desc()).all()

    def created_at_set(self, player_id: str) -> Set[datetime]:
        rows = self.db.query(PlayerRating.created_at).filter(
            PlayerRating.player_id == player_id
        ).all()
        return {row.created_at for row in rows}

    def append(self, player_id: str, created_at: Optional[datetime] = None, **snapshot) -> PlayerRating:
        """Add a new snapshot row stamped now unless created_at is given."""
        return self.create(
            player_id=player_id,
            created_at=created_at or utc_now(),
            **snapshot,
        )

    def copy_missing(self, source: List[PlayerRating], target_player_id: str) -> int:
        """
        Copy snapshots onto another player, skipping timestamps it already owns.

        Returns:
            Number of snapshots copied
        """
        present = self.created_at_set(target_player_id)
        copied = 0
        for rating in source:
            if rating.created_at in present:
                continue
            self.create(
                player_id=target_player_id,
                **{field: getattr(rating, field) for field in SNAPSHOT_FIELDS},
            )
            present.add(rating.created_at)
            copied += 1
        return copied


class RatingHistoryRepository(BaseRepository[RatingHistory]):
    """Repository for the long-term rating log."""

    def __init__(self, db: Session):
        super().__init__(RatingHistory, db)

    def latest(self, player_id: str) -> Optional[RatingHistory]:
        return self.query().filter(
            RatingHistory.player_id == player_id
        ).order_by(RatingHistory.timestamp.desc(), RatingHistory.id.desc()).first()

    def log_if_changed(self, player_id: str, username: str, rating: int) -> bool:
        """
        Append a rating entry unless it repeats the most recent one.

        Returns:
            True if an entry was written
        """
        latest = self.latest(player_id)
        if latest is not None and latest.rating == rating:
            return False
        self.create(player_id=player_id, username=username, rating=rating, timestamp=utc_now())
        return True
