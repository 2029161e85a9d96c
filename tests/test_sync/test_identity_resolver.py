"""
Tests for PlayerIdentityResolver.

Test Strategy:
- Given: Cached players and a fake stats service
- When: A username or id is resolved
- Then: Exactly one canonical player matches and drift is reconciled
"""
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from playersync.models import EsportsRosterEntry, NameHistory, Player, PlayerCharacterRating, PlayerRating
from playersync.repositories import NameHistoryRepository
from playersync.services.sync.identity_resolver import PlayerIdentityResolver
from playersync.services.sync.outcomes import ResolutionStatus


class TestLookupStrategies:
    """Cache hits and remote fallbacks."""

    @pytest.mark.asyncio
    async def test_trust_cache_skips_remote(self, db_session: Session, stats_client, make_player):
        """Should return a cache hit without calling the stats service."""
        make_player("P1", "Nova")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="nova", trust_cache=True)

        assert resolution.status == ResolutionStatus.CACHED
        assert resolution.player.id == "P1"
        assert stats_client.calls == []

    @pytest.mark.asyncio
    async def test_ambiguous_username_skips_username_query(self, db_session: Session, stats_client):
        """Should never send a one-character name to the username endpoint."""
        stats_client.add_player("P9", "X")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="X")

        assert resolution.status == ResolutionStatus.NOT_FOUND
        assert stats_client.called("query_by_username") == []

    @pytest.mark.asyncio
    async def test_ambiguous_username_resolves_through_cached_id(self, db_session: Session, stats_client, make_player):
        """Should fall back to a rank search by the cached id."""
        make_player("P9", "X")
        stats_client.add_player("P9", "X")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="x")

        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.player.id == "P9"
        assert stats_client.called("search_ranking") == ["P9"]

    @pytest.mark.asyncio
    async def test_unknown_player_is_not_found(self, db_session: Session, stats_client):
        """Should report NOT_FOUND and store nothing."""
        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nobody")

        assert resolution.status == ResolutionStatus.NOT_FOUND
        assert db_session.query(Player).count() == 0

    @pytest.mark.asyncio
    async def test_upstream_failure_is_transient(self, db_session: Session, stats_client, make_player):
        """Should report TRANSIENT_UPSTREAM when every lookup failed upstream."""
        make_player("P1", "Nova")
        stats_client.add_player("P1", "Nova")
        stats_client.failing = {"query_by_username", "search_ranking"}

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")

        assert resolution.status == ResolutionStatus.TRANSIENT_UPSTREAM
        assert resolution.player is None

    @pytest.mark.asyncio
    async def test_partial_upstream_failure_falls_through(self, db_session: Session, stats_client, make_player):
        """Should still resolve when the username endpoint fails but the rank search works."""
        make_player("P1", "Nova")
        stats_client.add_player("P1", "Nova")
        stats_client.failing = {"query_by_username"}

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")

        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.player.id == "P1"


class TestIdentityReconciliation:
    """Renames, case fixes, id repair and ghosts."""

    @pytest.mark.asyncio
    async def test_case_only_change_converges(self, db_session: Session, stats_client, make_player):
        """Should adopt the remote casing without logging a name change."""
        make_player("P1", "nova")
        stats_client.add_player("P1", "Nova")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="NOVA")
        db_session.commit()

        assert resolution.status == ResolutionStatus.RESOLVED
        assert db_session.get(Player, "P1").username == "Nova"
        assert db_session.query(NameHistory).count() == 0

    @pytest.mark.asyncio
    async def test_rename_is_logged(self, db_session: Session, stats_client, make_player):
        """Should record the old and new name and adopt the new one."""
        make_player("P1", "OldName")
        stats_client.add_player("P1", "NewName")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(player_id="P1")
        db_session.commit()

        entry = db_session.query(NameHistory).filter_by(user_id="P1").one()
        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.player.username == "NewName"
        assert (entry.old_username, entry.new_username) == ("OldName", "NewName")
        assert entry.changed_at.second == 0

    def test_name_history_dedupes_within_minute(self, db_session: Session, make_player):
        """Should write one row for repeated changes in the same minute."""
        make_player("P1", "OldName")
        repository = NameHistoryRepository(db_session)

        assert repository.record_change("P1", "OldName", "NewName", datetime(2026, 3, 1, 10, 15, 5)) is True
        assert repository.record_change("P1", "OldName", "NewName", datetime(2026, 3, 1, 10, 15, 50)) is False
        db_session.commit()

        assert db_session.query(NameHistory).filter_by(user_id="P1").count() == 1

    @pytest.mark.asyncio
    async def test_rename_onto_taken_name_keeps_old_name(self, db_session: Session, stats_client, make_player):
        """Should keep the previous name when another cached player holds the new one."""
        make_player("P1", "OldName")
        make_player("P2", "NewName")
        stats_client.add_player("P1", "NewName")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(player_id="P1")
        db_session.commit()

        assert resolution.status == ResolutionStatus.RESOLVED
        assert db_session.get(Player, "P1").username == "OldName"
        assert db_session.get(Player, "P2").username == "NewName"

    @pytest.mark.asyncio
    async def test_id_mismatch_is_repaired(self, db_session: Session, stats_client, make_player):
        """Should move the cached player and its history to the remote id."""
        make_player("OLD1", "Nova", ratings=[{"rating": 2000}, {"rating": 1900}])
        stats_client.add_player("P1639", "Nova")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")
        db_session.commit()

        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.player.id == "P1639"
        assert db_session.get(Player, "OLD1") is None
        assert db_session.query(PlayerRating).filter_by(player_id="P1639").count() == 2

    @pytest.mark.asyncio
    async def test_unrepairable_id_mismatch_is_data_corruption(self, db_session: Session, stats_client, make_player):
        """Should report DATA_CORRUPTION and leave both records untouched."""
        make_player("OLD1", "Nova")
        make_player("P1639", "Someone")
        stats_client.add_player("P1639", "Nova")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")

        assert resolution.status == ResolutionStatus.DATA_CORRUPTION
        assert resolution.player is None
        assert db_session.get(Player, "OLD1").username == "Nova"
        assert db_session.get(Player, "P1639").username == "Someone"

    @pytest.mark.asyncio
    async def test_ghost_is_promoted(self, db_session: Session, stats_client, make_player):
        """Should resolve a ghost to its canonical id and flag it as a former ghost."""
        make_player("NOTSET:nova", "nova", ghost=True, ratings=[{"rating": 1800}])
        stats_client.add_player("P1639", "Nova")

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")
        db_session.commit()

        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.was_ghost is True
        assert resolution.player.id == "P1639"
        assert resolution.player.is_ghost is False
        assert db_session.query(Player).count() == 1


class TestPlayerCreation:
    """First sightings."""

    @pytest.mark.asyncio
    async def test_new_player_is_stored_with_stats(self, db_session: Session, stats_client):
        """Should store the player with region, rating point and character aggregates."""
        stats_client.add_player("P1639", "Nova", rating=2400, rank=150, region="Europe", xp=640, level=21)
        # Global rank 150 is too far down to count as a Global placement
        stats_client.rankings["P1639"]["Global"] = stats_client.rankings["P1639"]["Europe"]

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")
        db_session.commit()

        player = db_session.get(Player, "P1639")
        rating = db_session.query(PlayerRating).filter_by(player_id="P1639").one()
        assert resolution.status == ResolutionStatus.CREATED
        assert player.region == "Europe"
        assert player.current_xp == 640
        assert player.emoticon_id == "emote-1"
        assert (rating.rating, rating.rank, rating.mastery_level) == (2400, 150, 21)
        assert db_session.query(PlayerCharacterRating).filter_by(player_id="P1639").count() == 2

    @pytest.mark.asyncio
    async def test_failed_sub_fetch_leaves_part_empty(self, db_session: Session, stats_client):
        """Should still create the player when character stats cannot be fetched."""
        stats_client.add_player("P1639", "Nova")
        stats_client.failing = {"fetch_character_stats"}

        resolution = await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")
        db_session.commit()

        assert resolution.status == ResolutionStatus.CREATED
        assert db_session.query(PlayerCharacterRating).count() == 0
        assert db_session.query(PlayerRating).filter_by(player_id="P1639").count() == 1

    @pytest.mark.asyncio
    async def test_roster_entries_are_linked(self, db_session: Session, stats_client):
        """Should link esports roster rows listed under the new player's id."""
        db_session.add(EsportsRosterEntry(user_id="P1639", team_name="Team Nova", season="S3"))
        db_session.commit()
        stats_client.add_player("P1639", "Nova")

        await PlayerIdentityResolver(db_session, stats_client).resolve(username="Nova")
        db_session.commit()

        entry = db_session.query(EsportsRosterEntry).one()
        assert entry.linked_id == "P1639"
