"""
Models for the player identity and stats cache.

Usage:
    from playersync.models import Player, PlayerRating
"""
from playersync.models.identity import Ghost, IdentityState, Resolved, ghost_placeholder_id
from playersync.models.snapshot import CachedSnapshot
from playersync.models.models import (
    Base,
    Player,
    PlayerRating,
    PlayerCharacterRating,
    NameHistory,
    RatingHistory,
    ServiceToken,
    EsportsRosterEntry,
    LeaderboardEntry,
    SyncMetadata,
)

__all__ = [
    "Base",
    "Player",
    "PlayerRating",
    "PlayerCharacterRating",
    "NameHistory",
    "RatingHistory",
    "ServiceToken",
    "EsportsRosterEntry",
    "LeaderboardEntry",
    "SyncMetadata",
    "Ghost",
    "Resolved",
    "IdentityState",
    "ghost_placeholder_id",
    "CachedSnapshot",
]
