"""Shared pytest fixtures for player-sync tests."""
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ENVIRONMENT", "test")

from playersync.core.config import REGION_PROBE_ORDER  # noqa: E402
from playersync.services.stats.client import StatsApiError, StatsApiNotFound  # noqa: E402
from playersync.services.stats.schemas import (  # noqa: E402
    LeaderboardPage,
    MasteryDoc,
    Paging,
    PlayerDoc,
    PlayerStatsDoc,
    RankedPlayer,
    RankingSearch,
    RegionMatch,
)


@pytest.fixture(scope="function")
def engine():
    """Isolated in-memory database shared by every session of one test."""
    from playersync.core.database import enable_sqlite_savepoints
    from playersync.models import Base

    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(bind=test_engine)

    yield test_engine

    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create fresh test database session."""
    session = session_factory()
    yield session
    session.close()


def character_payload(
    character_id: str,
    gamemode: str = "RankedInitial",
    forward: Optional[dict] = None,
    goalie: Optional[dict] = None,
) -> dict:
    """Raw upstream characterStats item."""
    base = {"games": 0, "wins": 0, "losses": 0, "scores": 0, "assists": 0, "saves": 0, "knockouts": 0, "mvp": 0}
    return {
        "characterId": character_id,
        "ratingName": gamemode,
        "roleStats": {
            "Forward": {**base, **(forward or {})},
            "Goalie": {**base, **(goalie or {})},
        },
    }


class FakeStatsClient:
    """
    In-memory stand-in for StatsApiClient.

    Methods named in ``failing`` raise StatsApiError; every call is recorded
    in ``calls`` as (method, argument).
    """

    def __init__(self):
        self.profiles: Dict[str, PlayerDoc] = {}
        self.rankings: Dict[str, Dict[str, RankedPlayer]] = {}
        self.mastery: Dict[str, MasteryDoc] = {}
        self.stats: Dict[str, PlayerStatsDoc] = {}
        self.boards: Dict[str, List[RankedPlayer]] = {}
        self.failing = set()
        self.calls = []

    def _record(self, method: str, argument) -> None:
        self.calls.append((method, argument))
        if method in self.failing:
            raise StatsApiError(f"{method} unavailable", status_code=503)

    def called(self, method: str) -> List:
        return [arg for name, arg in self.calls if name == method]

    def add_player(
        self,
        player_id: str,
        username: str,
        rating: Optional[int] = 2000,
        rank: int = 50,
        region: str = "Global",
        xp: int = 100,
        level: int = 10,
        emoticon_id: Optional[str] = "emote-1",
        characters: Optional[List[dict]] = None,
        **fields,
    ) -> RankedPlayer:
        """Register a player on every endpoint. rating=None leaves the player unranked."""
        profile = dict(player_id=player_id, username=username, emoticon_id=emoticon_id, mastery_level=level, **fields)
        self.profiles[username.lower()] = PlayerDoc(**profile)
        ranked = RankedPlayer(
            **profile,
            rating=rating or 0,
            rank=rank,
            wins=30,
            losses=20,
            games=50,
            top_role="Forward",
        )
        if rating is not None:
            self.rankings.setdefault(player_id, {})[region] = ranked
        self.mastery[player_id] = MasteryDoc(player_id=player_id, current_level=level, current_level_xp=xp)
        self.stats[player_id] = PlayerStatsDoc.from_payload({
            "characterStats": characters if characters is not None else [
                character_payload("CharacterA", forward={"games": 10, "wins": 6, "losses": 4}),
            ],
        })
        return ranked

    async def query_by_username(self, username: str) -> Optional[PlayerDoc]:
        self._record("query_by_username", username)
        return self.profiles.get(username.lower())

    async def search_ranking(self, player_id, entries_before=0, entries_after=0, region=None) -> RankingSearch:
        self._record("search_ranking", player_id)
        regions = self.rankings.get(player_id, {})
        if region in (None, "Global"):
            ranked = regions.get("Global") or next(iter(regions.values()), None)
        else:
            ranked = regions.get(region)
        if ranked is None:
            raise StatsApiNotFound(f"{player_id} not ranked", status_code=404)
        return RankingSearch(players=[ranked])

    async def fetch_mastery(self, player_id: str) -> MasteryDoc:
        self._record("fetch_mastery", player_id)
        if player_id not in self.mastery:
            raise StatsApiNotFound(f"no mastery for {player_id}", status_code=404)
        return self.mastery[player_id]

    async def fetch_character_stats(self, player_id: str) -> PlayerStatsDoc:
        self._record("fetch_character_stats", player_id)
        return self.stats.get(player_id, PlayerStatsDoc())

    async def ensure_region(self, player_id: str, region_hint: Optional[str] = None) -> Optional[RegionMatch]:
        self._record("ensure_region", player_id)
        regions = self.rankings.get(player_id, {})
        order = REGION_PROBE_ORDER if region_hint in (None, "Global") else (region_hint,)
        for region in order:
            ranked = regions.get(region)
            if ranked is None:
                continue
            if region == "Global" and ranked.rank > 100:
                continue
            return RegionMatch(player=ranked, region=region)
        return None

    async def leaderboard_page(self, start_rank=0, page_size=25, region=None) -> LeaderboardPage:
        self._record("leaderboard_page", (region, start_rank))
        board = self.boards.get(region or "Global", [])
        return LeaderboardPage(
            players=board[start_rank:start_rank + page_size],
            paging=Paging(start_rank=start_rank, page_size=page_size, total_items=len(board)),
        )


@pytest.fixture
def stats_client() -> FakeStatsClient:
    return FakeStatsClient()


@pytest.fixture
def make_player(db_session: Session):
    """Factory storing a cached player with optional rating history."""
    from playersync.models import Player, PlayerRating, PlayerCharacterRating
    from playersync.models.identity import GHOST, RESOLVED

    def _make(
        player_id: str,
        username: str,
        ratings: Optional[List[dict]] = None,
        ghost: bool = False,
        characters: int = 0,
        **fields,
    ) -> Player:
        player = Player(
            id=player_id,
            username=username,
            identity_state=GHOST if ghost else RESOLVED,
            observed_username=username if ghost else None,
            region=fields.pop("region", "Global"),
            **fields,
        )
        db_session.add(player)
        now = datetime(2026, 1, 1, 12, 0, 0)
        for index, rating in enumerate(ratings or []):
            values = {"rank": 50, "games": 10, "wins": 5, "losses": 5, "mastery_level": 10, **rating}
            values.setdefault("created_at", now - timedelta(days=index))
            db_session.add(PlayerRating(player_id=player_id, **values))
        for index in range(characters):
            db_session.add(PlayerCharacterRating(
                player_id=player_id,
                character=f"Character{index}",
                role="Forward",
                gamemode="RankedInitial",
                games=1,
            ))
        db_session.commit()
        return player

    return _make
