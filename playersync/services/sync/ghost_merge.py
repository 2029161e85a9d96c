"""
Ghost profile merge.

A ghost is a player seeded before its canonical id was known. Once the stats
service identifies it, the ghost is either folded into the canonical record
(rating points unioned by timestamp) or promoted in place to the canonical id.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from playersync.core.logging import get_logger
from playersync.models import Player
from playersync.repositories import IdentityConflictError, PlayerRepository, RatingRepository
from playersync.repositories.player_repository import FOLDED_REFERENCES
from playersync.services.stats.schemas import PlayerDoc
from playersync.services.sync.outcomes import DataCorruptionError

logger = get_logger(__name__)


class GhostMerger:
    """Resolves ghost players against their canonical remote identity."""

    def __init__(self, db: Session):
        self.db = db
        self.players = PlayerRepository(db)
        self.ratings = RatingRepository(db)

    def merge(self, ghost: Player, remote: PlayerDoc) -> Player:
        """
        Fold or promote a ghost.

        Safe to repeat: rating points are deduped on created_at and a ghost
        already merged by another resolution resolves to the canonical record.

        Args:
            ghost: The ghost player from the cache
            remote: The authoritative profile

        Returns:
            The canonical player

        Raises:
            DataCorruptionError: If neither the ghost nor a canonical record
                can be reconciled
        """
        return self._merge(ghost.id, remote, retry=True)

    def _merge(self, ghost_id: str, remote: PlayerDoc, retry: bool) -> Player:
        ghost = self.players.where_first(Player.id == ghost_id)
        canonical = self.players.find_by_id(remote.player_id)

        if ghost is None:
            if canonical is None:
                raise DataCorruptionError(
                    f"Ghost {ghost_id} vanished and no canonical player {remote.player_id} exists",
                    cached_id=ghost_id,
                    remote_id=remote.player_id,
                )
            logger.info(f"Ghost {ghost_id} already merged into {canonical.id}")
            return canonical

        try:
            if canonical is not None and canonical.id != ghost.id and not canonical.is_ghost:
                return self._fold_into(ghost, canonical, remote)
            return self._promote(ghost, remote)
        except (IdentityConflictError, IntegrityError) as e:
            if not retry:
                raise DataCorruptionError(
                    f"Ghost {ghost_id} could not be reconciled with {remote.player_id}: {e}",
                    cached_id=ghost_id,
                    remote_id=remote.player_id,
                ) from e
            # Another resolution promoted or created the canonical record meanwhile
            logger.info(f"Ghost {ghost_id} merge raced, retrying against current state")
            return self._merge(ghost_id, remote, retry=False)

    def _fold_into(self, ghost: Player, canonical: Player, remote: PlayerDoc) -> Player:
        with self.db.begin_nested():
            copied = self.ratings.copy_missing(self.ratings.for_player(ghost.id), canonical.id)
            self.players.move_references(ghost.id, canonical.id, FOLDED_REFERENCES)
            self.players.delete(ghost)
            self.db.flush()
            canonical.username = remote.username
            self.db.flush()

        self.db.expire(canonical, ["ratings"])
        logger.info(
            f"Merged ghost {ghost.id} into {canonical.id} "
            f"({copied} rating point(s) copied), username now {remote.username!r}"
        )
        return canonical

    def _promote(self, ghost: Player, remote: PlayerDoc) -> Player:
        ghost_id = ghost.id
        with self.db.begin_nested():
            promoted = self.players.reassign_id(ghost, remote.player_id)
            promoted.username = remote.username
            promoted.mark_resolved()
            self.db.flush()

        logger.info(f"Promoted ghost {ghost_id} to {promoted.id} ({remote.username!r})")
        return promoted
