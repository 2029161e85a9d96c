"""
Repository layer for data access.

Usage:
    from playersync.repositories import PlayerRepository

    players = PlayerRepository(db)
    player = players.find_by_username("Nova")
"""
from playersync.repositories.base import BaseRepository
from playersync.repositories.player_repository import PlayerRepository, IdentityConflictError
from playersync.repositories.rating_repository import RatingRepository, RatingHistoryRepository
from playersync.repositories.character_rating_repository import CharacterRatingRepository
from playersync.repositories.name_history_repository import NameHistoryRepository

__all__ = [
    "BaseRepository",
    "PlayerRepository",
    "IdentityConflictError",
    "RatingRepository",
    "RatingHistoryRepository",
    "CharacterRatingRepository",
    "NameHistoryRepository",
]
