"""
Database models for the player identity and stats cache.

Natural unique keys carry the concurrency guarantees of the sync layer:
- players.id and lower(players.username)
- player_ratings (player_id, created_at)
- player_character_ratings (player_id, character, role, gamemode)
- name_history (user_id, changed_at)
"""
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, ForeignKey, Text, JSON,
    Index, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship, declarative_base

from playersync.core.config import settings
from playersync.models.identity import GHOST, RESOLVED, Ghost, IdentityState, Resolved
from playersync.utils.time import utc_now

Base = declarative_base()


class Player(Base):
    """Canonical player identity plus the profile fields mirrored from the stats service."""
    __tablename__ = "players"

    id = Column(String(64), primary_key=True)  # Remote-issued id, or NOTSET:* for ghosts
    username = Column(String(64), nullable=False)
    identity_state = Column(String(16), nullable=False, default=RESOLVED, index=True)
    observed_username = Column(String(64), nullable=True)  # Ghosts only
    region = Column(String(32), nullable=True, default="Global")

    emoticon_id = Column(String(64), nullable=True)
    logo_id = Column(String(64), nullable=True)
    title_id = Column(String(64), nullable=True)
    nameplate_id = Column(String(64), nullable=True)
    social_url = Column(String(255), nullable=True)
    discord_id = Column(String(64), nullable=True)
    tags = Column(JSON, nullable=True)
    current_xp = Column(Integer, nullable=True)
    player_status = Column(String(32), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # Relationships
    ratings = relationship(
        "PlayerRating",
        back_populates="player",
        order_by="desc(PlayerRating.created_at)",
        cascade="all, delete-orphan",
    )
    character_ratings = relationship(
        "PlayerCharacterRating",
        back_populates="player",
        cascade="all, delete-orphan",
    )

    @property
    def identity(self) -> IdentityState:
        if self.identity_state == GHOST:
            return Ghost(observed_username=self.observed_username or self.username)
        return Resolved()

    @property
    def is_ghost(self) -> bool:
        return isinstance(self.identity, Ghost)

    def mark_resolved(self) -> None:
        self.identity_state = RESOLVED
        self.observed_username = None

    def to_dict(self) -> dict:
        latest = self.ratings[0] if self.ratings else None
        return {
            "id": self.id,
            "username": self.username,
            "identity_state": self.identity_state,
            "region": self.region,
            "current_xp": self.current_xp,
            "discord_id": self.discord_id,
            "latest_rating": latest.to_dict() if latest else None,
            "rating_points": len(self.ratings),
            "character_ratings": len(self.character_ratings),
        }

    def __repr__(self):
        return f"<Player {self.id} {self.username!r} ({self.identity_state})>"


Index("uq_players_username_lower", func.lower(Player.username), unique=True)


class PlayerRating(Base):
    """Point-in-time ranked snapshot. Ordered newest first it forms the rating history."""
    __tablename__ = "player_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(
        String(64),
        ForeignKey("players.id", onupdate="CASCADE", ondelete="CASCADE"),
        nullable=False,
    )
    rating = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=False, default=lambda: settings.UNRANKED_RANK)
    games = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    mastery_level = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    player = relationship("Player", back_populates="ratings")

    __table_args__ = (
        UniqueConstraint('player_id', 'created_at', name='uq_player_ratings_player_created'),
        Index('ix_player_ratings_player_created', 'player_id', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            "rating": self.rating,
            "rank": self.rank,
            "games": self.games,
            "wins": self.wins,
            "losses": self.losses,
            "mastery_level": self.mastery_level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PlayerCharacterRating(Base):
    """Cumulative counters per (player, character, role, gamemode). Replaced, never incremented."""
    __tablename__ = "player_character_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(
        String(64),
        ForeignKey("players.id", onupdate="CASCADE", ondelete="CASCADE"),
        nullable=False,
    )
    character = Column(String(64), nullable=False)
    role = Column(String(16), nullable=False)  # Forward, Goalie
    gamemode = Column(String(64), nullable=False)
    games = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    scores = Column(Integer, nullable=False, default=0)
    assists = Column(Integer, nullable=False, default=0)
    saves = Column(Integer, nullable=False, default=0)
    knockouts = Column(Integer, nullable=False, default=0)
    mvp = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    player = relationship("Player", back_populates="character_ratings")

    __table_args__ = (
        UniqueConstraint(
            'player_id', 'character', 'role', 'gamemode',
            name='uq_character_ratings_key'
        ),
    )

    @property
    def key(self) -> tuple:
        return (self.player_id, self.character, self.role, self.gamemode)


class NameHistory(Base):
    """Append-only username change log, one row per player per minute."""
    __tablename__ = "name_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    changed_at = Column(DateTime, nullable=False)  # Truncated to the minute
    old_username = Column(String(64), nullable=False)
    new_username = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'changed_at', name='uq_name_history_user_minute'),
    )


class RatingHistory(Base):
    """Long-term rating-only log, appended when a player's rating moves."""
    __tablename__ = "rating_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(String(64), nullable=False)
    username = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('ix_rating_history_player_timestamp', 'player_id', 'timestamp'),
    )


class ServiceToken(Base):
    """Bearer and refresh token pair for an upstream service."""
    __tablename__ = "service_tokens"

    service = Column(String(32), primary_key=True)
    token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class EsportsRosterEntry(Base):
    """
    Competitive roster row imported from tournament data.

    ``user_id`` may reference a player before that player exists locally;
    ``linked_id`` is filled in once the player is created.
    """
    __tablename__ = "esports_roster_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    linked_id = Column(String(64), nullable=True, index=True)
    team_name = Column(String(128), nullable=True)
    series = Column(String(128), nullable=True)
    season = Column(String(32), nullable=True)


class LeaderboardEntry(Base):
    """Per-region leaderboard snapshot written by the leaderboard job."""
    __tablename__ = "leaderboard_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    region = Column(String(32), nullable=False)
    rank = Column(Integer, nullable=False)
    player_id = Column(String(64), nullable=False, index=True)
    username = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    games = Column(Integer, nullable=False, default=0)
    winrate = Column(Float, nullable=False, default=0.0)
    top_role = Column(String(16), nullable=True)
    top_character = Column(String(64), nullable=True)
    mastery_level = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('ix_leaderboard_region_rank', 'region', 'rank'),
    )


class SyncMetadata(Base):
    """Tracks bulk job status and health metrics.

    Monitors:
    - Last sync time (started and completed)
    - Records processed vs matched vs failed
    - Sync duration
    """
    __tablename__ = "sync_metadata"

    id = Column(String(36), primary_key=True)
    source = Column(String(32), nullable=False)  # leaderboard
    data_type = Column(String(32), nullable=False)  # region name
    last_sync_started_at = Column(DateTime, nullable=True)
    last_sync_completed_at = Column(DateTime, nullable=True, index=True)
    last_sync_status = Column(String(16), nullable=True, index=True)  # success, failed, in_progress, partial
    records_processed = Column(Integer, nullable=False, default=0)
    records_matched = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint('source', 'data_type', name='uq_sync_metadata_source_type'),
        Index('ix_sync_metadata_status', 'last_sync_status'),
    )
