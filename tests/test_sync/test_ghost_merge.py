"""
Tests for GhostMerger.

Test Strategy:
- Given: A ghost seeded under a placeholder id, optionally a canonical record
- When: The canonical remote identity is known
- Then: One canonical player remains holding the union of rating points
"""
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from playersync.models import (
    EsportsRosterEntry,
    LeaderboardEntry,
    NameHistory,
    Player,
    PlayerRating,
    RatingHistory,
    ghost_placeholder_id,
)
from playersync.services.stats.schemas import PlayerDoc
from playersync.services.sync.ghost_merge import GhostMerger
from playersync.services.sync.outcomes import DataCorruptionError

T1 = datetime(2026, 1, 1, 12, 0)
T2 = datetime(2026, 1, 2, 12, 0)
T3 = datetime(2026, 1, 3, 12, 0)


@pytest.fixture
def remote() -> PlayerDoc:
    return PlayerDoc(player_id="P1639", username="Nova")


def rating_times(db: Session, player_id: str):
    return {r.created_at for r in db.query(PlayerRating).filter_by(player_id=player_id).all()}


class TestGhostFold:
    """Ghost folded into an existing canonical record."""

    def test_rating_points_are_unioned(self, db_session: Session, make_player, remote):
        """Should leave the canonical player with {t1, t2, t3} and delete the ghost."""
        ghost_id = ghost_placeholder_id("Nova")
        make_player("P1639", "NovaOld", ratings=[
            {"rating": 2300, "created_at": T1},
            {"rating": 2350, "created_at": T2},
        ])
        ghost = make_player(ghost_id, "Nova", ghost=True, ratings=[
            {"rating": 2350, "created_at": T2},
            {"rating": 2400, "created_at": T3},
        ])

        canonical = GhostMerger(db_session).merge(ghost, remote)
        db_session.commit()

        assert canonical.id == "P1639"
        assert canonical.username == "Nova"
        assert rating_times(db_session, "P1639") == {T1, T2, T3}
        assert db_session.query(PlayerRating).filter_by(player_id="P1639").count() == 3
        assert db_session.get(Player, ghost_id) is None

    def test_ghost_references_follow_the_fold(self, db_session: Session, make_player, remote):
        """Should move the ghost's name, rating log, leaderboard and roster rows to the canonical id."""
        ghost_id = ghost_placeholder_id("Nova")
        make_player("P1639", "NovaOld")
        ghost = make_player(ghost_id, "Nova", ghost=True)
        db_session.add_all([
            NameHistory(user_id="P1639", changed_at=T1, old_username="Nova0", new_username="NovaOld"),
            NameHistory(user_id=ghost_id, changed_at=T1, old_username="Nova0", new_username="NovaOld"),
            NameHistory(user_id=ghost_id, changed_at=T2, old_username="NovaOld", new_username="Nova"),
            RatingHistory(player_id=ghost_id, username="Nova", rating=2400, timestamp=T3),
            LeaderboardEntry(region="Europe", rank=4, player_id=ghost_id, username="Nova", rating=2400),
            EsportsRosterEntry(user_id="P1639", linked_id=ghost_id, team_name="Team Nova"),
        ])
        db_session.commit()

        GhostMerger(db_session).merge(ghost, remote)
        db_session.commit()

        names = db_session.query(NameHistory).filter_by(user_id="P1639").all()
        assert sorted(n.changed_at for n in names) == [T1, T2]
        assert db_session.query(NameHistory).filter_by(user_id=ghost_id).count() == 0
        assert db_session.query(RatingHistory).one().player_id == "P1639"
        assert db_session.query(LeaderboardEntry).one().player_id == "P1639"
        assert db_session.query(EsportsRosterEntry).one().linked_id == "P1639"

    def test_repeat_merge_is_idempotent(self, db_session: Session, session_factory, make_player, remote):
        """Should resolve a ghost merged by an earlier resolution to the canonical record."""
        ghost_id = ghost_placeholder_id("Nova")
        make_player("P1639", "NovaOld", ratings=[{"rating": 2300, "created_at": T1}])
        ghost = make_player(ghost_id, "Nova", ghost=True, ratings=[{"rating": 2400, "created_at": T3}])

        GhostMerger(db_session).merge(ghost, remote)
        db_session.commit()

        # A second resolution still holding the stale ghost
        other = session_factory()
        try:
            stale = Player(id=ghost_id, username="Nova")
            canonical = GhostMerger(other).merge(stale, remote)
            other.commit()

            assert canonical.id == "P1639"
            assert rating_times(other, "P1639") == {T1, T3}
        finally:
            other.close()

    def test_vanished_ghost_without_canonical_is_corruption(self, db_session: Session, remote):
        """Should raise DataCorruptionError when neither record exists."""
        stale = Player(id=ghost_placeholder_id("Nova"), username="Nova")

        with pytest.raises(DataCorruptionError) as exc_info:
            GhostMerger(db_session).merge(stale, remote)

        assert exc_info.value.remote_id == "P1639"


class TestGhostPromote:
    """Ghost promoted in place when no canonical record exists."""

    def test_ghost_takes_canonical_id(self, db_session: Session, make_player, remote):
        """Should move the ghost and its rating points to the canonical id."""
        ghost_id = ghost_placeholder_id("nova")
        ghost = make_player(ghost_id, "nova", ghost=True, ratings=[
            {"rating": 2350, "created_at": T2},
            {"rating": 2400, "created_at": T3},
        ])

        promoted = GhostMerger(db_session).merge(ghost, remote)
        db_session.commit()

        assert promoted.id == "P1639"
        assert promoted.username == "Nova"
        assert promoted.is_ghost is False
        assert rating_times(db_session, "P1639") == {T2, T3}
        assert db_session.query(PlayerRating).filter_by(player_id=ghost_id).count() == 0
        assert db_session.query(Player).count() == 1
