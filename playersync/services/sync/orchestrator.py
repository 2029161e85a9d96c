"""Player sync orchestrator.

Single entry point for keeping one player's cache in line with the stats
service. Request handlers and scheduled jobs call ``sync_player``:
1. Resolve identity (cache, fallback lookups, ghost merge, renames)
2. Fetch mastery and regional ranking concurrently
3. Skip writes when the cache is already fresh
4. Otherwise reconcile profile fields, append or patch the rating history
   and replace character aggregates
"""
import asyncio
from typing import Optional

from sqlalchemy.orm import Session

from playersync.core.logging import get_logger, resolution_context
from playersync.repositories import PlayerRepository
from playersync.services.stats.client import StatsApiClient, StatsApiError
from playersync.services.sync.character_aggregates import CharacterAggregateSync
from playersync.services.sync.freshness import should_skip_update
from playersync.services.sync.identity_resolver import PlayerIdentityResolver
from playersync.services.sync.outcomes import ResolutionResult, ResolutionStatus
from playersync.services.sync.rating_history import RatingHistoryAppender
from playersync.services.sync.reconcile import apply_diff, diff_profile

logger = get_logger(__name__)


class PlayerSyncOrchestrator:
    """
    Coordinates identity resolution and stats reconciliation for one player.

    The orchestrator owns the transaction: it commits once per successful
    sync and rolls back on unexpected errors.
    """

    def __init__(self, db: Session, client: StatsApiClient):
        """
        Args:
            db: SQLAlchemy database session
            client: Stats service client
        """
        self.db = db
        self.client = client
        self.resolver = PlayerIdentityResolver(db, client)
        self.players = PlayerRepository(db)
        self.appender = RatingHistoryAppender(db)
        self.aggregates = CharacterAggregateSync(db)

    async def sync_player(
        self,
        username: Optional[str] = None,
        player_id: Optional[str] = None,
        region: Optional[str] = None,
        trust_cache: bool = False,
    ) -> ResolutionResult:
        """
        Resolve a player and bring its cached stats up to date.

        Args:
            username: Username to resolve (case-insensitive)
            player_id: Remote id to resolve
            region: Region to check the ranking in (defaults to the cached region)
            trust_cache: Return a cache hit as-is, accepting staleness

        Returns:
            ResolutionResult; expected failures are reported in its status
        """
        with resolution_context(player_id or username):
            try:
                return await self._sync_player(username, player_id, region, trust_cache)
            except Exception:
                self.db.rollback()
                logger.exception(f"Player sync failed for {player_id or username}")
                raise

    async def _sync_player(
        self,
        username: Optional[str],
        player_id: Optional[str],
        region: Optional[str],
        trust_cache: bool,
    ) -> ResolutionResult:
        resolution = await self.resolver.resolve(
            username=username,
            player_id=player_id,
            region_hint=region,
            trust_cache=trust_cache,
        )

        if resolution.status == ResolutionStatus.CACHED:
            return ResolutionResult(ResolutionStatus.CACHED, player=resolution.player)

        if resolution.status == ResolutionStatus.CREATED:
            self.db.commit()
            return ResolutionResult(
                ResolutionStatus.CREATED,
                player=resolution.player,
                changes={"created": True},
            )

        if resolution.status != ResolutionStatus.RESOLVED:
            log = logger.error if resolution.status == ResolutionStatus.DATA_CORRUPTION else logger.info
            log(f"Resolution of {player_id or username} ended with {resolution.status.value}: {resolution.message}")
            return ResolutionResult(resolution.status, message=resolution.message)

        player = resolution.player
        mastery, region_match = await asyncio.gather(
            self.client.fetch_mastery(player.id),
            self.client.ensure_region(player.id, region or player.region),
            return_exceptions=True,
        )
        for outcome in (mastery, region_match):
            if isinstance(outcome, BaseException) and not isinstance(outcome, StatsApiError):
                raise outcome

        if isinstance(mastery, StatsApiError):
            logger.warning(f"Mastery unavailable for {player.id}: {mastery}")
            mastery = None
        ranking_available = not isinstance(region_match, StatsApiError)
        if not ranking_available:
            logger.warning(f"Ranking unavailable for {player.id}: {region_match}")
            region_match = None
        ranking = region_match.player if region_match is not None else None

        # An incomplete profile (no emoticon) is refreshed like a ghost
        is_ghost = resolution.was_ghost or player.is_ghost or player.emoticon_id is None
        snapshot = self.players.snapshot(player)
        if ranking_available and should_skip_update(snapshot, mastery, ranking, is_ghost):
            self.db.commit()
            logger.debug(f"{player.id} is fresh, skipping stats writes")
            return ResolutionResult(ResolutionStatus.FRESH, player=player)

        changes = {}
        diff = diff_profile(
            player,
            resolution.remote,
            mastery=mastery,
            region=region_match.region if region_match is not None else None,
        )
        if diff:
            apply_diff(player, diff)
            changes["profile"] = sorted(diff)

        if ranking_available:
            mastery_level = mastery.current_level if mastery is not None else (ranking.mastery_level if ranking else None)
            write = self.appender.append_or_patch(player.id, ranking, mastery_level, username=player.username)
            changes["rating"] = write.value

        try:
            stats = await self.client.fetch_character_stats(player.id)
        except StatsApiError as e:
            logger.warning(f"Character stats unavailable for {player.id}: {e}")
        else:
            changes["character_aggregates"] = self.aggregates.sync(player.id, stats).to_dict()

        self.db.commit()
        logger.info(f"Updated {player.id} ({player.username!r}): {', '.join(changes) or 'no changes'}")
        return ResolutionResult(ResolutionStatus.UPDATED, player=player, changes=changes)
