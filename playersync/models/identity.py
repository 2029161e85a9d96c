"""
Identity state of a cached player.

A player is either ``Resolved`` (its id is the canonical id issued by the
stats service) or a ``Ghost`` seeded before that id was known. Ghosts carry
the username they were observed under.
"""
from dataclasses import dataclass
from typing import Union

RESOLVED = "resolved"
GHOST = "ghost"


@dataclass(frozen=True)
class Resolved:
    state: str = RESOLVED


@dataclass(frozen=True)
class Ghost:
    observed_username: str
    state: str = GHOST


IdentityState = Union[Resolved, Ghost]


def ghost_placeholder_id(username: str) -> str:
    """Placeholder primary key for a ghost seeded from a leaderboard crawl."""
    return f"NOTSET:{username.lower()}"
