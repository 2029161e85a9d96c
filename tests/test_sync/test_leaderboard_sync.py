"""
Tests for the leaderboard bulk job.

Test Strategy:
- Given: Ranked boards on the fake stats service
- When: LeaderboardSync walks them
- Then: Entries, players and sync metadata reflect the board, and one failing
  player never aborts the region
"""
from typing import List

import httpx
import pytest
from sqlalchemy.orm import Session

from playersync.models import LeaderboardEntry, Player, PlayerRating, SyncMetadata
from playersync.services.stats.client import StatsApiClient
from playersync.services.stats.schemas import RankedPlayer, TokenPair
from playersync.services.stats.token_store import InMemoryTokenStore
from playersync.services.sync.leaderboard_sync import LeaderboardSync


def seed_board(stats_client, region: str = "Global", count: int = 3) -> List[RankedPlayer]:
    board = [
        stats_client.add_player(f"P{i}", f"Player{i}", rating=3000 - i * 10, rank=i, region=region)
        for i in range(1, count + 1)
    ]
    stats_client.boards[region] = board
    return board


@pytest.fixture
def job(db_session: Session, stats_client) -> LeaderboardSync:
    return LeaderboardSync(db_session, stats_client, item_delay=0)


class TestLeaderboardSync:

    # Paging Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_walks_every_page(self, db_session: Session, stats_client, job):
        """Should create players and entries for every listed player across pages."""
        seed_board(stats_client, count=3)

        result = await job.run(regions=["Global"], page_size=2)

        entries = db_session.query(LeaderboardEntry).order_by(LeaderboardEntry.rank).all()
        assert result["success"] is True
        assert result["regions"]["Global"]["processed"] == 3
        assert [e.player_id for e in entries] == ["P1", "P2", "P3"]
        assert db_session.query(Player).count() == 3
        assert db_session.query(PlayerRating).filter_by(player_id="P2").one().rating == 2980
        assert stats_client.called("leaderboard_page") == [("Global", 0), ("Global", 2)]

    @pytest.mark.asyncio
    async def test_stops_past_max_rank(self, db_session: Session, stats_client, job):
        """Should stop once a player ranked worse than max_rank is reached."""
        seed_board(stats_client, count=3)

        result = await job.sync_region("Global", page_size=2, max_rank=2)

        assert result["processed"] == 2
        assert db_session.query(LeaderboardEntry).count() == 2

    @pytest.mark.asyncio
    async def test_rerun_replaces_entries(self, db_session: Session, stats_client, job):
        """Should replace the region's entries and not duplicate rating points."""
        seed_board(stats_client, count=3)

        await job.run(regions=["Global"], page_size=25)
        await job.run(regions=["Global"], page_size=25)

        assert db_session.query(LeaderboardEntry).count() == 3
        assert db_session.query(PlayerRating).count() == 3

    # Failure Isolation Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_failing_player_does_not_abort_region(self, db_session: Session, stats_client, job):
        """Should count the failure, roll it back, and keep going."""
        seed_board(stats_client, count=3)
        original = job.reconcile_ranked_player

        def flaky(ranked, region):
            if ranked.player_id == "P2":
                raise RuntimeError("bad row")
            return original(ranked, region)

        job.reconcile_ranked_player = flaky

        result = await job.sync_region("Global", page_size=25)

        assert result["status"] == "partial"
        assert (result["succeeded"], result["failed"]) == (2, 1)
        assert {e.player_id for e in db_session.query(LeaderboardEntry).all()} == {"P1", "P3"}
        assert db_session.get(Player, "P2") is None

    @pytest.mark.asyncio
    async def test_malformed_row_is_dropped_not_fatal(self, db_session: Session):
        """Should sync the well-formed neighbours of a row missing its username."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "players": [
                    {"playerId": "P1", "username": "Player1", "rank": 1, "rating": 2990},
                    {"playerId": "P2", "rank": 2, "rating": 2980},
                    {"playerId": "P3", "username": "Player3", "rank": 3, "rating": 2970},
                ],
                "paging": {"startRank": 0, "pageSize": 25, "totalItems": 3},
            })

        store = InMemoryTokenStore(TokenPair(token="jwt", refresh_token="refresh"))
        async with StatsApiClient(store, base_url="https://stats.test", transport=httpx.MockTransport(handler)) as client:
            result = await LeaderboardSync(db_session, client, item_delay=0).sync_region("Europe")

        assert result["status"] == "success"
        assert (result["processed"], result["succeeded"], result["skipped"]) == (2, 2, 1)
        assert {e.player_id for e in db_session.query(LeaderboardEntry).all()} == {"P1", "P3"}
        assert db_session.get(Player, "P2") is None

    @pytest.mark.asyncio
    async def test_upstream_failure_marks_region_failed(self, db_session: Session, stats_client, job):
        """Should record a failed run when the first page cannot be fetched."""
        seed_board(stats_client, count=3)
        stats_client.failing = {"leaderboard_page"}

        result = await job.run(regions=["Global"])

        metadata = db_session.query(SyncMetadata).filter_by(source="leaderboard", data_type="Global").one()
        assert result["success"] is False
        assert metadata.last_sync_status == "failed"
        assert "leaderboard_page unavailable" in metadata.error_message

    # Identity Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_listed_ghost_is_merged(self, db_session: Session, stats_client, make_player, job):
        """Should promote a ghost whose name appears on the board."""
        make_player("NOTSET:nova", "nova", ghost=True)
        nova = stats_client.add_player("P77", "Nova", rating=2500, rank=1)
        stats_client.boards["Global"] = [nova]

        result = await job.sync_region("Global")

        player = db_session.get(Player, "P77")
        assert result["succeeded"] == 1
        assert player.username == "Nova"
        assert player.is_ghost is False
        assert db_session.query(Player).count() == 1

    @pytest.mark.asyncio
    async def test_binds_discord_account(self, db_session: Session, stats_client, make_player, job):
        """Should bind the Discord id carried on the leaderboard row."""
        make_player("P5", "Linked")
        linked = stats_client.add_player(
            "P5", "Linked", rank=1, platform_ids={"discord": {"discordId": "123456789"}},
        )
        stats_client.boards["Europe"] = [linked]

        await job.sync_region("Europe")

        assert db_session.get(Player, "P5").discord_id == "123456789"
        assert db_session.query(LeaderboardEntry).filter_by(region="Europe").count() == 1

    # Status Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_sync_status_reports_last_run(self, stats_client, job):
        """Should expose the last run's counts per region."""
        seed_board(stats_client, count=2)

        await job.run(regions=["Global"])
        status = job.get_sync_status()

        assert len(status) == 1
        assert status[0]["region"] == "Global"
        assert status[0]["status"] == "success"
        assert status[0]["processed"] == 2
