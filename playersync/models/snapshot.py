"""
Detached view of a cached player, used by the freshness decision.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CachedSnapshot:
    player_id: str
    current_xp: Optional[int]
    latest_rating: Optional[int]
    latest_mastery_level: Optional[int]
    rating_points: int
    character_aggregates: int

    @property
    def has_rating_history(self) -> bool:
        return self.rating_points > 0
