"""
Rating history appender.

A new PlayerRating row is written only when the rating moves. A rank-only
change patches the latest row in place, so the history never holds two
consecutive points with the same rating.
"""
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from playersync.core.config import settings
from playersync.core.logging import get_logger
from playersync.repositories import RatingHistoryRepository, RatingRepository
from playersync.services.stats.schemas import RankedPlayer, RoleStats

logger = get_logger(__name__)


class RatingWrite(str, Enum):
    APPENDED = "appended"
    PATCHED_RANK = "patched_rank"
    PATCHED_MASTERY = "patched_mastery"


class RatingHistoryAppender:
    """Applies a remote ranked snapshot to a player's rating history."""

    def __init__(self, db: Session):
        self.ratings = RatingRepository(db)
        self.history = RatingHistoryRepository(db)

    def append_or_patch(
        self,
        player_id: str,
        snapshot: Optional[RankedPlayer],
        mastery_level: Optional[int],
        username: Optional[str] = None,
        fallback_totals: Optional[RoleStats] = None,
    ) -> RatingWrite:
        """
        Record a ranked snapshot.

        Args:
            player_id: Player the snapshot belongs to
            snapshot: Remote ranked row, or None for an unranked player
                (recorded as rating 0 at the unranked rank)
            mastery_level: Current account mastery level
            username: Name logged alongside long-term rating entries
            fallback_totals: Games/wins/losses to use when unranked

        Returns:
            Which write was performed
        """
        rating = snapshot.rating if snapshot is not None else 0
        rank = (snapshot.rank if snapshot is not None else None) or settings.UNRANKED_RANK

        latest = self.ratings.latest(player_id)
        if latest is not None and latest.rating == rating:
            if mastery_level is not None:
                latest.mastery_level = mastery_level
            if latest.rank != rank:
                logger.debug(f"Rank for {player_id} moved {latest.rank} -> {rank} at rating {rating}")
                latest.rank = rank
                return RatingWrite.PATCHED_RANK
            return RatingWrite.PATCHED_MASTERY

        if snapshot is not None:
            counters = {"games": snapshot.games, "wins": snapshot.wins, "losses": snapshot.losses}
        elif fallback_totals is not None:
            counters = {"games": fallback_totals.games, "wins": fallback_totals.wins, "losses": fallback_totals.losses}
        else:
            counters = {"games": 0, "wins": 0, "losses": 0}

        self.ratings.append(
            player_id,
            rating=rating,
            rank=rank,
            mastery_level=mastery_level,
            **counters,
        )
        self.ratings.flush()
        logger.info(
            f"Appended rating point for {player_id}: "
            f"{latest.rating if latest is not None else 'none'} -> {rating} (rank {rank})"
        )

        if rating and username:
            self.history.log_if_changed(player_id, username, rating)
        return RatingWrite.APPENDED
