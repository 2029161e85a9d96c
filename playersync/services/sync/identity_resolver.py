"""
Player identity resolution.

Maps a requested username or id onto one canonical cached Player, reconciling
drift between the cache and the stats service:
- Ghost profiles merged or promoted once their canonical id is known
- ID mismatches repaired, or reported as data corruption when they cannot be
- Username changes logged to name history, case-only changes patched
- First sightings stored with their rating, mastery and character aggregates
"""
import asyncio
from typing import Awaitable, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from playersync.core.logging import get_logger
from playersync.models import Player
from playersync.repositories import IdentityConflictError, NameHistoryRepository, PlayerRepository
from playersync.services.stats.client import StatsApiClient, StatsApiError
from playersync.services.stats.schemas import PlayerDoc, RankedPlayer
from playersync.services.sync.character_aggregates import CharacterAggregateSync
from playersync.services.sync.ghost_merge import GhostMerger
from playersync.services.sync.outcomes import DataCorruptionError, Resolution, ResolutionStatus
from playersync.services.sync.rating_history import RatingHistoryAppender
from playersync.services.sync.reconcile import apply_diff, diff_profile
from playersync.services.sync.strategies import StrategyChain, StrategyOutcome
from playersync.utils.time import utc_now

logger = get_logger(__name__)

T = TypeVar("T")


class PlayerIdentityResolver:
    """
    Resolves a lookup to a canonical Player.

    The resolver writes through the session it is given but never commits;
    the caller owns the transaction.
    """

    def __init__(self, db: Session, client: StatsApiClient):
        self.db = db
        self.client = client
        self.players = PlayerRepository(db)
        self.name_history = NameHistoryRepository(db)
        self.ghost_merger = GhostMerger(db)
        self.appender = RatingHistoryAppender(db)
        self.aggregates = CharacterAggregateSync(db)

    async def resolve(
        self,
        username: Optional[str] = None,
        player_id: Optional[str] = None,
        region_hint: Optional[str] = None,
        trust_cache: bool = False,
    ) -> Resolution:
        """
        Resolve a username or id to a canonical player.

        Args:
            username: Requested username (matched case-insensitively)
            player_id: Requested remote id
            region_hint: Region to probe first when creating a player
            trust_cache: Return a cache hit without contacting the stats service

        Returns:
            Resolution with status CACHED, CREATED, RESOLVED, NOT_FOUND,
            DATA_CORRUPTION or TRANSIENT_UPSTREAM
        """
        if not username and not player_id:
            raise ValueError("A username or player id is required")

        cached = self._lookup_cache(username, player_id)
        if cached is not None and trust_cache:
            logger.debug(f"Serving {cached.id} from cache")
            return Resolution(ResolutionStatus.CACHED, player=cached)

        lookup = await StrategyChain.for_query(username, player_id, cached).run(self.client)
        if lookup.outcome == StrategyOutcome.ERROR:
            return Resolution(
                ResolutionStatus.TRANSIENT_UPSTREAM,
                message=f"Stats service unavailable: {lookup.error}",
            )
        if not lookup.found:
            return Resolution(
                ResolutionStatus.NOT_FOUND,
                message=f"Player {username or player_id} not found",
            )

        doc = lookup.doc
        if cached is None:
            cached = self.players.find_by_id(doc.player_id)

        try:
            if cached is None:
                player, created = await self.create_player(doc, region_hint)
                if created:
                    return Resolution(ResolutionStatus.CREATED, player=player, remote=doc)
                return Resolution(ResolutionStatus.RESOLVED, player=player, remote=doc)

            was_ghost = cached.is_ghost
            player = self.reconcile_identity(cached, doc)
        except DataCorruptionError as e:
            logger.error(
                f"Data corruption resolving {username or player_id}: {e} "
                f"(cached={e.cached_id}, remote={e.remote_id})"
            )
            self.db.rollback()
            return Resolution(ResolutionStatus.DATA_CORRUPTION, message=str(e))

        return Resolution(ResolutionStatus.RESOLVED, player=player, remote=doc, was_ghost=was_ghost)

    def _lookup_cache(self, username: Optional[str], player_id: Optional[str]) -> Optional[Player]:
        if player_id:
            player = self.players.find_by_id(player_id)
            if player is not None:
                return player
        if username:
            return self.players.find_by_username(username)
        return None

    # ========================================================================
    # Reconciliation
    # ========================================================================

    def reconcile_identity(self, cached: Player, doc: PlayerDoc) -> Player:
        """
        Bring a cached player's identity in line with the remote profile.

        Order: ghost merge, id mismatch repair, then username change or case fix.

        Raises:
            DataCorruptionError: If the id cannot be repaired
        """
        player = cached
        if player.is_ghost:
            player = self.ghost_merger.merge(player, doc)

        if player.id != doc.player_id:
            player = self._repair_id_mismatch(player, doc)

        if player.username.lower() != doc.username.lower():
            self._rename(player, doc.username)
        elif player.username != doc.username:
            self._set_username(player, doc.username)
            logger.info(f"Updated username casing for {player.id} to {doc.username!r}")

        return player

    def _repair_id_mismatch(self, player: Player, doc: PlayerDoc) -> Player:
        old_id = player.id
        logger.warning(f"ID mismatch for {doc.username!r}: cached {old_id}, remote {doc.player_id}")
        try:
            with self.db.begin_nested():
                return self.players.reassign_id(player, doc.player_id)
        except (IdentityConflictError, IntegrityError) as e:
            raise DataCorruptionError(
                f"Player ID mismatch for {doc.username!r} could not be repaired",
                cached_id=old_id,
                remote_id=doc.player_id,
            ) from e

    def _rename(self, player: Player, new_username: str) -> None:
        old_username = player.username
        self.name_history.record_change(player.id, old_username, new_username, utc_now())
        if self._set_username(player, new_username):
            logger.info(f"Username change for {player.id}: {old_username!r} -> {new_username!r}")

    def _set_username(self, player: Player, username: str) -> bool:
        try:
            with self.db.begin_nested():
                player.username = username
                self.db.flush()
        except IntegrityError:
            logger.error(
                f"Username {username!r} is held by another cached player; "
                f"{player.id} keeps its previous name"
            )
            return False
        return True

    # ========================================================================
    # Creation
    # ========================================================================

    async def _optional(self, awaitable: Awaitable[T], what: str, player_id: str) -> Optional[T]:
        try:
            return await awaitable
        except StatsApiError as e:
            logger.warning(f"Could not fetch {what} for {player_id}: {e}")
            return None

    async def create_player(self, doc: PlayerDoc, region_hint: Optional[str] = None) -> Tuple[Player, bool]:
        """
        Store a first sighting with its rating, mastery and character aggregates.

        Sub-fetches run concurrently; any that fail leave their part empty
        and the next resolution fills it in.

        Returns:
            (player, created). created is False when another resolution
            stored the same id first.
        """
        region_match, mastery, stats = await asyncio.gather(
            self._optional(self.client.ensure_region(doc.player_id, region_hint), "region", doc.player_id),
            self._optional(self.client.fetch_mastery(doc.player_id), "mastery", doc.player_id),
            self._optional(self.client.fetch_character_stats(doc.player_id), "character stats", doc.player_id),
        )

        if region_match is not None:
            ranking, region = region_match.player, region_match.region
        else:
            ranking = doc if isinstance(doc, RankedPlayer) else None
            region = region_hint

        player, created = self._insert_player(doc, region, mastery.current_level_xp if mastery else None)
        if not created:
            return player, False

        mastery_level = mastery.current_level if mastery else (ranking.mastery_level if ranking else doc.mastery_level)
        self.appender.append_or_patch(
            player.id,
            ranking,
            mastery_level,
            username=player.username,
            fallback_totals=stats.ranked_totals() if stats else None,
        )
        if stats is not None:
            self.aggregates.sync(player.id, stats)
        self._link_roster_entries(player.id)

        logger.info(f"Created player {player.id} ({player.username!r}) in {player.region}")
        return player, True

    def create_ranked_player(self, ranked: RankedPlayer, region: str) -> Tuple[Player, bool]:
        """Store a first sighting from a leaderboard row (no extra fetches)."""
        player, created = self._insert_player(ranked, region, None)
        if created:
            self.appender.append_or_patch(player.id, ranked, ranked.mastery_level, username=player.username)
            self._link_roster_entries(player.id)
            logger.info(f"Created player {player.id} ({player.username!r}) from {region} leaderboard")
        return player, created

    def _insert_player(self, doc: PlayerDoc, region: Optional[str], current_xp: Optional[int]) -> Tuple[Player, bool]:
        try:
            with self.db.begin_nested():
                player = self.players.create_player(doc.player_id, doc.username, region=region, current_xp=current_xp)
                apply_diff(player, diff_profile(player, doc))
                self.db.flush()
            return player, True
        except IntegrityError as e:
            existing = self.players.find_by_id(doc.player_id)
            if existing is None:
                raise DataCorruptionError(
                    f"Cannot store {doc.player_id}: username {doc.username!r} belongs to another cached player",
                    remote_id=doc.player_id,
                ) from e
            logger.info(f"Player {doc.player_id} was created concurrently, reconciling instead")
            return self.reconcile_identity(existing, doc), False

    def _link_roster_entries(self, player_id: str) -> None:
        try:
            with self.db.begin_nested():
                linked = self.players.link_roster_entries(player_id)
        except SQLAlchemyError as e:
            logger.warning(f"Roster linking failed for {player_id}: {e}")
            return
        if linked:
            logger.info(f"Linked {linked} roster entr{'y' if linked == 1 else 'ies'} to {player_id}")
