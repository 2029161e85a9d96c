"""
Player sync pipeline.

Key components:
- PlayerSyncOrchestrator: single-player entry point
- PlayerIdentityResolver: cache lookup, fallback lookups, identity reconciliation
- GhostMerger: folds or promotes ghost profiles
- should_skip_update: freshness decision
- RatingHistoryAppender / CharacterAggregateSync: stats writes
- LeaderboardSync: bulk leaderboard job
"""
from playersync.services.sync.outcomes import (
    DataCorruptionError,
    Resolution,
    ResolutionResult,
    ResolutionStatus,
)
from playersync.services.sync.freshness import should_skip_update
from playersync.services.sync.ghost_merge import GhostMerger
from playersync.services.sync.rating_history import RatingHistoryAppender, RatingWrite
from playersync.services.sync.character_aggregates import CharacterAggregateSync
from playersync.services.sync.identity_resolver import PlayerIdentityResolver
from playersync.services.sync.orchestrator import PlayerSyncOrchestrator
from playersync.services.sync.leaderboard_sync import LeaderboardSync

__all__ = [
    "DataCorruptionError",
    "Resolution",
    "ResolutionResult",
    "ResolutionStatus",
    "should_skip_update",
    "GhostMerger",
    "RatingHistoryAppender",
    "RatingWrite",
    "CharacterAggregateSync",
    "PlayerIdentityResolver",
    "PlayerSyncOrchestrator",
    "LeaderboardSync",
]
