"""
Result types returned by the sync pipeline.

Entry points never raise for expected outcomes (not found, corrupted
identity, upstream outage); they return a ResolutionResult instead.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from playersync.models import Player
from playersync.services.stats.schemas import PlayerDoc


class ResolutionStatus(str, Enum):
    CACHED = "cached"  # Served from cache on request, no upstream call
    CREATED = "created"  # First sighting, new player stored
    FRESH = "fresh"  # Cache already matched remote truth, nothing written
    UPDATED = "updated"  # Stats reconciled and written
    RESOLVED = "resolved"  # Identity reconciled; stats not examined
    NOT_FOUND = "not_found"
    DATA_CORRUPTION = "data_corruption"
    TRANSIENT_UPSTREAM = "transient_upstream"


SUCCESS_STATUSES = frozenset({
    ResolutionStatus.CACHED,
    ResolutionStatus.CREATED,
    ResolutionStatus.FRESH,
    ResolutionStatus.UPDATED,
    ResolutionStatus.RESOLVED,
})


class DataCorruptionError(Exception):
    """Cached identity cannot be reconciled with remote truth without losing data."""

    def __init__(self, message: str, cached_id: Optional[str] = None, remote_id: Optional[str] = None):
        super().__init__(message)
        self.cached_id = cached_id
        self.remote_id = remote_id


@dataclass
class Resolution:
    """Identity resolver output, before the stats steps run."""
    status: ResolutionStatus
    player: Optional[Player] = None
    remote: Optional[PlayerDoc] = None
    was_ghost: bool = False
    message: Optional[str] = None


@dataclass
class ResolutionResult:
    """Final outcome of a player sync."""
    status: ResolutionStatus
    player: Optional[Player] = None
    message: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status.value,
            "message": self.message,
            "player": self.player.to_dict() if self.player is not None else None,
            "changes": self.changes,
        }
