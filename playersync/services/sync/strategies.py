"""
Remote lookup strategies for identity resolution.

Each strategy tries one way of finding a player's authoritative profile and
reports Found, NotFound, Error or Skipped. The chain runs them in order:
- username query (skipped for ambiguous, very short names)
- rank search by the requested id
- rank search by the cached id, verifying the username still matches

The first Found wins. NotFound and Error fall through to the next strategy.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from playersync.core.config import settings
from playersync.core.logging import get_logger
from playersync.models import Player
from playersync.services.stats.client import StatsApiClient, StatsApiError, StatsApiNotFound
from playersync.services.stats.schemas import PlayerDoc

logger = get_logger(__name__)


class StrategyOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class StrategyResult:
    outcome: StrategyOutcome
    doc: Optional[PlayerDoc] = None
    error: Optional[Exception] = None
    strategy: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.outcome == StrategyOutcome.FOUND


def is_ambiguous_username(username: str) -> bool:
    """Names this short match too many players on the username endpoint."""
    return len(username.strip()) <= settings.AMBIGUOUS_USERNAME_MAX_LENGTH


class ResolutionStrategy(ABC):
    name = "strategy"

    @abstractmethod
    async def attempt(self, client: StatsApiClient) -> StrategyResult:
        ...

    def _result(self, outcome: StrategyOutcome, doc=None, error=None) -> StrategyResult:
        return StrategyResult(outcome=outcome, doc=doc, error=error, strategy=self.name)


class UsernameQueryStrategy(ResolutionStrategy):
    """Look the player up on the username endpoint."""
    name = "username_query"

    def __init__(self, username: str, expected_id: Optional[str] = None):
        self.username = username
        self.expected_id = expected_id

    async def attempt(self, client: StatsApiClient) -> StrategyResult:
        if is_ambiguous_username(self.username):
            return self._result(StrategyOutcome.SKIPPED)
        try:
            doc = await client.query_by_username(self.username)
        except StatsApiNotFound:
            return self._result(StrategyOutcome.NOT_FOUND)
        except StatsApiError as e:
            return self._result(StrategyOutcome.ERROR, error=e)

        if doc is None:
            return self._result(StrategyOutcome.NOT_FOUND)
        if self.expected_id is not None and doc.player_id != self.expected_id:
            # The name now belongs to a different account
            return self._result(StrategyOutcome.NOT_FOUND)
        return self._result(StrategyOutcome.FOUND, doc=doc)


class RankSearchStrategy(ResolutionStrategy):
    """Find the player on the ranked leaderboard by id."""

    def __init__(self, player_id: str, expected_username: Optional[str] = None, name: str = "rank_search"):
        self.player_id = player_id
        self.expected_username = expected_username
        self.name = name

    async def attempt(self, client: StatsApiClient) -> StrategyResult:
        try:
            result = await client.search_ranking(self.player_id, 0, 0)
        except StatsApiNotFound:
            return self._result(StrategyOutcome.NOT_FOUND)
        except StatsApiError as e:
            return self._result(StrategyOutcome.ERROR, error=e)

        if not result.players:
            return self._result(StrategyOutcome.NOT_FOUND)

        doc = result.players[0]
        if (
            self.expected_username is not None
            and doc.username.lower() != self.expected_username.lower()
        ):
            return self._result(StrategyOutcome.NOT_FOUND)
        return self._result(StrategyOutcome.FOUND, doc=doc)


class StrategyChain:
    """Ordered fallback over resolution strategies."""

    def __init__(self, strategies: List[ResolutionStrategy]):
        self.strategies = strategies

    @classmethod
    def for_query(
        cls,
        username: Optional[str],
        player_id: Optional[str],
        cached: Optional[Player] = None,
    ) -> "StrategyChain":
        """
        Build the chain for a lookup.

        Args:
            username: Requested username, if any
            player_id: Requested remote id, if any
            cached: Cache entry found for the request, if any
        """
        strategies: List[ResolutionStrategy] = []
        searched_ids = set()

        if username:
            strategies.append(UsernameQueryStrategy(username, expected_id=player_id))
            if player_id:
                strategies.append(RankSearchStrategy(player_id, expected_username=username, name="rank_search_by_id"))
                searched_ids.add(player_id)
        elif player_id:
            strategies.append(RankSearchStrategy(player_id, name="rank_search_by_id"))
            searched_ids.add(player_id)
            if cached is not None:
                strategies.append(UsernameQueryStrategy(cached.username, expected_id=player_id))

        if cached is not None and not cached.is_ghost and cached.id not in searched_ids:
            strategies.append(RankSearchStrategy(
                cached.id,
                expected_username=username or cached.username,
                name="cached_id_rank_search",
            ))

        return cls(strategies)

    async def run(self, client: StatsApiClient) -> StrategyResult:
        """
        Run strategies until one finds the player.

        Returns:
            The first Found result. Otherwise Error when every attempted
            strategy failed upstream, else NotFound.
        """
        attempted = 0
        errors: List[StrategyResult] = []

        for strategy in self.strategies:
            result = await strategy.attempt(client)
            if result.outcome == StrategyOutcome.SKIPPED:
                logger.debug(f"Strategy {strategy.name} skipped")
                continue

            attempted += 1
            if result.found:
                logger.debug(f"Strategy {strategy.name} found {result.doc.player_id}")
                return result
            if result.outcome == StrategyOutcome.ERROR:
                logger.warning(f"Strategy {strategy.name} failed: {result.error}")
                errors.append(result)

        if attempted and len(errors) == attempted:
            return errors[-1]
        return StrategyResult(outcome=StrategyOutcome.NOT_FOUND)
