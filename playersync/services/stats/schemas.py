"""
Pydantic models for stats service payloads.

Payloads use camelCase keys; models expose snake_case attributes and
ignore fields the sync layer does not read.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from playersync.core.config import settings

logger = logging.getLogger(__name__)

ROLES = ("Forward", "Goalie")
NO_GAMEMODE = "None"


class StatsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DiscordLink(StatsModel):
    discord_id: Optional[str] = None


class PlatformIds(StatsModel):
    discord: Optional[DiscordLink] = None


class PlayerDoc(StatsModel):
    """Profile document returned by the username query endpoint."""
    player_id: str
    username: str
    logo_id: Optional[str] = None
    title_id: Optional[str] = None
    nameplate_id: Optional[str] = None
    emoticon_id: Optional[str] = None
    social_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    platform_ids: Optional[PlatformIds] = None
    mastery_level: Optional[int] = None
    player_status: Optional[str] = None

    @property
    def discord_id(self) -> Optional[str]:
        if self.platform_ids and self.platform_ids.discord:
            return self.platform_ids.discord.discord_id
        return None


class MostPlayedCharacter(StatsModel):
    character_id: str
    games_played: int = 0


class RankedPlayer(PlayerDoc):
    """Leaderboard row: a profile plus the ranked snapshot."""
    rank: int = Field(default_factory=lambda: settings.UNRANKED_RANK)
    rating: int = 0
    wins: int = 0
    losses: int = 0
    games: int = 0
    top_role: Optional[str] = None
    most_played_characters: List[MostPlayedCharacter] = Field(default_factory=list)

    @property
    def winrate(self) -> float:
        total = self.wins + self.losses
        return round(self.wins / total * 100, 2) if total else 0.0

    @property
    def top_character(self) -> Optional[str]:
        if not self.most_played_characters:
            return None
        return max(self.most_played_characters, key=lambda c: c.games_played).character_id


class RankingSearch(StatsModel):
    players: List[RankedPlayer] = Field(default_factory=list)


class Paging(StatsModel):
    start_rank: int = 0
    page_size: int = 0
    total_items: int = 0


class LeaderboardPage(StatsModel):
    """
    One page of a ranked leaderboard.

    Built with ``from_payload`` so that a malformed row is dropped on its own
    and the rest of the page is still synced.
    """
    players: List[RankedPlayer] = Field(default_factory=list)
    paging: Paging = Field(default_factory=Paging)
    skipped: int = 0

    @classmethod
    def from_payload(cls, payload: dict) -> "LeaderboardPage":
        skipped = 0
        players: List[RankedPlayer] = []
        for item in payload.get("players") or []:
            try:
                players.append(RankedPlayer.model_validate(item))
            except ValidationError as e:
                skipped += 1
                logger.warning(
                    f"Skipping malformed leaderboard row "
                    f"{item.get('playerId') if isinstance(item, dict) else item!r}: "
                    f"{e.error_count()} validation error(s)"
                )

        paging = Paging.model_validate(payload.get("paging") or {})
        return cls(players=players, paging=paging, skipped=skipped)


class RegionMatch(StatsModel):
    player: RankedPlayer
    region: str


class MasteryDoc(StatsModel):
    player_id: Optional[str] = None
    current_level: int
    current_level_xp: int
    xp_to_next_level: Optional[int] = None
    total_xp: Optional[int] = None


class RoleStats(StatsModel):
    games: int = 0
    wins: int = 0
    losses: int = 0
    scores: int = 0
    assists: int = 0
    saves: int = 0
    knockouts: int = 0
    mvp: int = 0


class RoleStatBlock(StatsModel):
    """Stats split by role for one rating bucket (gamemode)."""
    rating_name: str
    role_stats: Dict[str, RoleStats]

    @field_validator("role_stats")
    @classmethod
    def _both_roles_present(cls, value: Dict[str, RoleStats]) -> Dict[str, RoleStats]:
        missing = [role for role in ROLES if role not in value]
        if missing:
            raise ValueError(f"missing role stats: {', '.join(missing)}")
        return value


class CharacterStat(RoleStatBlock):
    character_id: str


class PlayerStatsDoc(StatsModel):
    """
    Per-character and per-gamemode stats for one player.

    Built with ``from_payload`` so that a malformed item is dropped on its own
    instead of failing the whole document.
    """
    character_stats: List[CharacterStat] = Field(default_factory=list)
    player_stats: List[RoleStatBlock] = Field(default_factory=list)
    skipped: int = 0

    @classmethod
    def from_payload(cls, payload: dict) -> "PlayerStatsDoc":
        skipped = 0
        character_stats: List[CharacterStat] = []
        for item in payload.get("characterStats") or []:
            try:
                character_stats.append(CharacterStat.model_validate(item))
            except ValidationError as e:
                skipped += 1
                logger.warning(
                    f"Skipping malformed character stat "
                    f"{item.get('characterId') if isinstance(item, dict) else item!r}: "
                    f"{e.error_count()} validation error(s)"
                )

        player_stats: List[RoleStatBlock] = []
        for item in payload.get("playerStats") or []:
            try:
                player_stats.append(RoleStatBlock.model_validate(item))
            except ValidationError:
                skipped += 1
                logger.warning("Skipping malformed player stat block")

        return cls(character_stats=character_stats, player_stats=player_stats, skipped=skipped)

    def ranked_totals(self, rating_name: str = "RankedInitial") -> RoleStats:
        """Summed Forward and Goalie counters for one rating bucket."""
        totals = RoleStats()
        for block in self.player_stats:
            if block.rating_name != rating_name:
                continue
            for role in ROLES:
                stats = block.role_stats[role]
                totals.games += stats.games
                totals.wins += stats.wins
                totals.losses += stats.losses
        return totals


class TokenPair(StatsModel):
    token: str = Field(alias="jwt")
    refresh_token: str
