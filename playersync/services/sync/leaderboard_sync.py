"""Leaderboard bulk job.

Walks the ranked leaderboard of each region page by page and reconciles
every listed player:
- identity (ghost merge, rename, case fix) through the identity resolver
- lightweight creation of unseen players
- rating snapshot append or patch, long-term rating log
- Discord binding
- a LeaderboardEntry row per listed player

Pages are fetched one at a time with a delay between players to stay within
upstream rate limits. A failing player is logged, rolled back and counted;
it never aborts the region.
"""
import asyncio
import uuid
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from playersync.core.config import settings
from playersync.core.logging import get_logger, resolution_context
from playersync.models import LeaderboardEntry, SyncMetadata
from playersync.repositories import BaseRepository, PlayerRepository
from playersync.services.stats.client import StatsApiClient, StatsApiError
from playersync.services.stats.schemas import RankedPlayer
from playersync.services.sync.identity_resolver import PlayerIdentityResolver
from playersync.services.sync.rating_history import RatingHistoryAppender
from playersync.services.sync.reconcile import apply_diff, diff_discord
from playersync.utils.time import utc_now

logger = get_logger(__name__)

SYNC_SOURCE = "leaderboard"


class LeaderboardSync:
    """Repopulates leaderboard snapshots and player ratings from the ranked boards."""

    def __init__(self, db: Session, client: StatsApiClient, item_delay: Optional[float] = None):
        """
        Args:
            db: SQLAlchemy database session
            client: Stats service client
            item_delay: Seconds to sleep between players (defaults to settings)
        """
        self.db = db
        self.client = client
        self.item_delay = settings.LEADERBOARD_ITEM_DELAY if item_delay is None else item_delay
        self.players = PlayerRepository(db)
        self.entries = BaseRepository(LeaderboardEntry, db)
        self.resolver = PlayerIdentityResolver(db, client)
        self.appender = RatingHistoryAppender(db)

    async def run(
        self,
        regions: Optional[List[str]] = None,
        page_size: Optional[int] = None,
        max_rank: Optional[int] = None,
    ) -> Dict:
        """
        Sync every region in turn.

        Returns:
            Per-region results plus overall success
        """
        regions = regions or settings.LEADERBOARD_REGIONS
        results = {}
        with resolution_context():
            for region in regions:
                results[region] = await self.sync_region(region, page_size, max_rank)

        return {
            'success': all(r['success'] for r in results.values()),
            'regions': results,
        }

    async def sync_region(
        self,
        region: str,
        page_size: Optional[int] = None,
        max_rank: Optional[int] = None,
    ) -> Dict:
        """
        Walk one region's leaderboard.

        Args:
            region: Region name (Global for the worldwide board)
            page_size: Players per page
            max_rank: Stop once a player ranked worse than this is reached

        Returns:
            Sync results with counts
        """
        page_size = page_size or settings.LEADERBOARD_PAGE_SIZE
        max_rank = max_rank or settings.LEADERBOARD_MAX_RANK
        start_time = utc_now()
        logger.info(f"Starting leaderboard sync for {region} (page size {page_size}, max rank {max_rank})")

        metadata = self._get_or_create_metadata(SYNC_SOURCE, region)
        metadata.last_sync_started_at = start_time
        metadata.last_sync_status = 'in_progress'
        self.entries.query().filter(LeaderboardEntry.region == region).delete(synchronize_session=False)
        self.db.commit()

        processed = succeeded = failed = skipped = 0
        offset = 0
        error: Optional[str] = None

        try:
            while True:
                page = await self.client.leaderboard_page(offset, page_size, region)
                skipped += page.skipped
                reached_limit = False

                for ranked in page.players:
                    if ranked.rank > max_rank:
                        reached_limit = True
                        break
                    processed += 1
                    if await self._sync_ranked_player(ranked, region):
                        succeeded += 1
                    else:
                        failed += 1
                    if self.item_delay:
                        await asyncio.sleep(self.item_delay)

                offset += page_size
                if reached_limit or not page.players or page.paging.total_items <= offset:
                    break
        except StatsApiError as e:
            error = str(e)
            logger.error(f"Leaderboard sync for {region} stopped at offset {offset}: {e}")

        duration_ms = int((utc_now() - start_time).total_seconds() * 1000)
        if error is not None:
            status = 'failed' if processed == 0 else 'partial'
        else:
            status = 'success' if failed == 0 else 'partial'

        metadata.last_sync_completed_at = utc_now()
        metadata.last_sync_status = status
        metadata.records_processed = processed
        metadata.records_matched = succeeded
        metadata.records_failed = failed
        metadata.error_message = error
        metadata.sync_duration_ms = duration_ms
        self.db.commit()

        logger.info(
            f"Leaderboard sync for {region} {status}: {succeeded}/{processed} players, "
            f"{failed} failed, {skipped} malformed row(s) dropped ({duration_ms}ms)"
        )
        return {
            'success': status == 'success',
            'status': status,
            'processed': processed,
            'succeeded': succeeded,
            'failed': failed,
            'skipped': skipped,
            'duration_ms': duration_ms,
            'error': error,
        }

    async def _sync_ranked_player(self, ranked: RankedPlayer, region: str) -> bool:
        """Reconcile one leaderboard row. Returns False (after rollback) on failure."""
        with resolution_context(ranked.player_id):
            try:
                self.reconcile_ranked_player(ranked, region)
                self.db.commit()
                return True
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to sync {ranked.player_id} #{ranked.rank} @ {region}: {e}", exc_info=True)
                return False

    def reconcile_ranked_player(self, ranked: RankedPlayer, region: str) -> None:
        """Apply one leaderboard row to the cache (no commit)."""
        player = self.players.find_by_id(ranked.player_id)
        by_name = self.players.find_by_username(ranked.username)
        if by_name is not None and by_name.is_ghost:
            player = self.resolver.reconcile_identity(by_name, ranked)

        if player is None:
            player, created = self.resolver.create_ranked_player(ranked, region)
        else:
            created = False
            player = self.resolver.reconcile_identity(player, ranked)

        if not created:
            self.appender.append_or_patch(player.id, ranked, ranked.mastery_level, username=player.username)

        discord = diff_discord(player, ranked)
        if discord:
            apply_diff(player, discord)
            logger.info(f"Bound Discord account for {player.id}")

        self.entries.create(
            region=region,
            rank=ranked.rank,
            player_id=player.id,
            username=player.username,
            rating=ranked.rating,
            wins=ranked.wins,
            losses=ranked.losses,
            games=ranked.games,
            winrate=ranked.winrate,
            top_role=ranked.top_role,
            top_character=ranked.top_character,
            mastery_level=ranked.mastery_level,
        )
        self.db.flush()

    def _get_or_create_metadata(self, source: str, data_type: str) -> SyncMetadata:
        """Get or create sync metadata record."""
        metadata = self.db.query(SyncMetadata).filter(
            SyncMetadata.source == source,
            SyncMetadata.data_type == data_type
        ).first()

        if not metadata:
            metadata = SyncMetadata(
                id=str(uuid.uuid4()),
                source=source,
                data_type=data_type,
                records_processed=0,
                records_matched=0,
                records_failed=0,
            )
            self.db.add(metadata)

        return metadata

    def get_sync_status(self) -> List[Dict]:
        """Health of the last run per region."""
        rows = self.db.query(SyncMetadata).filter(SyncMetadata.source == SYNC_SOURCE).all()
        return [
            {
                'region': m.data_type,
                'status': m.last_sync_status,
                'last_completed': m.last_sync_completed_at.isoformat() if m.last_sync_completed_at else None,
                'processed': m.records_processed,
                'matched': m.records_matched,
                'failed': m.records_failed,
                'duration_ms': m.sync_duration_ms,
                'error': m.error_message,
            }
            for m in rows
        ]
