"""
Freshness decision: can a resolution skip the write path?
"""
from typing import Optional

from playersync.models import CachedSnapshot
from playersync.services.stats.schemas import MasteryDoc, RankedPlayer


def should_skip_update(
    cached: CachedSnapshot,
    remote_mastery: Optional[MasteryDoc],
    remote_ranking: Optional[RankedPlayer],
    is_ghost: bool,
) -> bool:
    """
    Decide whether the cache already matches remote truth.

    Skips only when XP, mastery level and rating all match and the profile is
    complete. A player with rating history but no character aggregates
    (season reset) is always refreshed.

    Args:
        cached: Snapshot of the cached player
        remote_mastery: Mastery document, None when unavailable
        remote_ranking: Ranked snapshot, None when unranked
        is_ghost: Whether the cached profile is a ghost or otherwise incomplete

    Returns:
        True if writes can be skipped
    """
    if is_ghost or remote_mastery is None:
        return False

    if cached.has_rating_history and cached.character_aggregates == 0:
        return False

    remote_rating = remote_ranking.rating if remote_ranking is not None else 0

    return (
        cached.current_xp == remote_mastery.current_level_xp
        and cached.latest_mastery_level == remote_mastery.current_level
        and cached.latest_rating == remote_rating
    )
