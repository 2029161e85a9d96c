"""
Player repository: cache lookups, creation and identity rewrites.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from playersync.models import (
    CachedSnapshot,
    EsportsRosterEntry,
    LeaderboardEntry,
    NameHistory,
    Player,
    PlayerCharacterRating,
    PlayerRating,
    RatingHistory,
)
from playersync.models.identity import RESOLVED
from playersync.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Columns holding a player id outside the players table
PLAYER_ID_REFERENCES = (
    (PlayerRating, "player_id"),
    (PlayerCharacterRating, "player_id"),
    (NameHistory, "user_id"),
    (RatingHistory, "player_id"),
    (LeaderboardEntry, "player_id"),
    (EsportsRosterEntry, "linked_id"),
)

# Moved onto the surviving player when a ghost is folded into it. Ratings are
# unioned separately and character aggregates are rebuilt from the stats service.
FOLDED_REFERENCES = (
    (NameHistory, "user_id"),
    (RatingHistory, "player_id"),
    (LeaderboardEntry, "player_id"),
    (EsportsRosterEntry, "linked_id"),
)


class IdentityConflictError(Exception):
    """An id rewrite would collide with an existing player."""

    def __init__(self, old_id: str, new_id: str):
        self.old_id = old_id
        self.new_id = new_id
        super().__init__(f"Cannot move player {old_id} to {new_id}: id already taken")


class PlayerRepository(BaseRepository[Player]):
    """Repository for Player entities."""

    def __init__(self, db: Session):
        super().__init__(Player, db)

    def find_by_username(self, username: str) -> Optional[Player]:
        """Case-insensitive username lookup."""
        return self.where_first(func.lower(Player.username) == username.lower())

    def create_player(
        self,
        player_id: str,
        username: str,
        region: Optional[str] = None,
        **fields,
    ) -> Player:
        """Add a resolved player to the session (caller flushes)."""
        return self.create(
            id=player_id,
            username=username,
            identity_state=RESOLVED,
            region=region or "Global",
            **fields,
        )

    def reassign_id(self, player: Player, new_id: str) -> Player:
        """
        Move a player, and every row that references it, to a new primary key.

        The parent row is rewritten first, then each referencing column, all
        inside the caller's transaction.

        Args:
            player: The player to move (must already be persistent)
            new_id: The canonical id to assign

        Returns:
            The player reloaded under its new id

        Raises:
            IdentityConflictError: If another player already holds new_id
        """
        old_id = player.id
        self.db.flush()

        if self.db.query(self.db.query(Player).filter(Player.id == new_id).exists()).scalar():
            raise IdentityConflictError(old_id, new_id)

        self.db.query(Player).filter(Player.id == old_id).update(
            {Player.id: new_id}, synchronize_session=False
        )
        self.move_references(old_id, new_id)
        self.db.flush()

        # The identity map still keys the instance under old_id
        self.db.expunge(player)
        self.db.expire_all()

        moved = self.find_by_id(new_id)
        logger.info(f"Reassigned player id {old_id} -> {new_id}")
        return moved

    def move_references(self, old_id: str, new_id: str, references=PLAYER_ID_REFERENCES) -> int:
        """
        Point referencing rows at another player id.

        Name changes already logged for new_id at the same minute are kept and
        the old id's duplicates dropped.

        Returns:
            Number of rows moved
        """
        moved = 0
        for model, column_name in references:
            column = getattr(model, column_name)
            if model is NameHistory:
                taken = self.db.query(NameHistory.changed_at).filter(NameHistory.user_id == new_id)
                self.db.query(NameHistory).filter(
                    NameHistory.user_id == old_id,
                    NameHistory.changed_at.in_(taken.scalar_subquery()),
                ).delete(synchronize_session=False)
            moved += self.db.query(model).filter(column == old_id).update(
                {column: new_id}, synchronize_session=False
            )
        return moved

    def snapshot(self, player: Player) -> CachedSnapshot:
        """Detached view of the fields the freshness decision compares."""
        latest = self.db.query(PlayerRating).filter(
            PlayerRating.player_id == player.id
        ).order_by(PlayerRating.created_at.desc()).first()

        rating_points = self.db.query(func.count(PlayerRating.id)).filter(
            PlayerRating.player_id == player.id
        ).scalar() or 0
        character_aggregates = self.db.query(func.count(PlayerCharacterRating.id)).filter(
            PlayerCharacterRating.player_id == player.id
        ).scalar() or 0

        return CachedSnapshot(
            player_id=player.id,
            current_xp=player.current_xp,
            latest_rating=latest.rating if latest else None,
            latest_mastery_level=latest.mastery_level if latest else None,
            rating_points=rating_points,
            character_aggregates=character_aggregates,
        )

    def link_roster_entries(self, player_id: str) -> int:
        """
        Point unlinked roster rows for this id at the player.

        Returns:
            Number of roster rows linked
        """
        return self.db.query(EsportsRosterEntry).filter(
            EsportsRosterEntry.user_id == player_id,
            EsportsRosterEntry.linked_id.is_(None),
        ).update({EsportsRosterEntry.linked_id: player_id}, synchronize_session=False)
