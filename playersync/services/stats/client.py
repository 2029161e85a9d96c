"""
Stats service client.

Wraps the ranked, mastery, player and stats endpoints of the upstream
gameplay-stats API:
- Bearer and refresh tokens loaded from a TokenStore
- Single-flight token refresh on 401/403, then one replay of the request
- Outbound concurrency bounded by a semaphore
- Typed errors: StatsApiNotFound for 404, StatsApiError for everything else
"""
import asyncio
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from playersync.core.config import REGION_PROBE_ORDER, settings
from playersync.core.logging import get_logger
from playersync.services.stats.schemas import (
    LeaderboardPage,
    MasteryDoc,
    PlayerDoc,
    PlayerStatsDoc,
    RankingSearch,
    RegionMatch,
    TokenPair,
)
from playersync.services.stats.token_store import TokenStore

logger = get_logger(__name__)

GLOBAL_REGION = "Global"


class StatsApiError(Exception):
    """A stats service call failed (network error, bad status or bad payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StatsApiNotFound(StatsApiError):
    """The stats service answered 404."""


class TokenRefreshError(StatsApiError):
    """Could not obtain a fresh token pair."""


class StatsApiClient:
    """
    Async client for the stats service.

    Example:
        async with StatsApiClient(DatabaseTokenStore(SessionLocal)) as client:
            doc = await client.query_by_username("Nova")
    """

    def __init__(
        self,
        token_store: TokenStore,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            token_store: Where credentials are loaded from and saved to
            base_url: API root (defaults to settings.STATS_API_BASE_URL)
            timeout: Request timeout in seconds
            max_concurrency: Maximum simultaneous in-flight requests
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.token_store = token_store
        self.base_url = base_url or settings.STATS_API_BASE_URL
        self.timeout = timeout or settings.STATS_API_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._tokens: Optional[TokenPair] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.STATS_API_MAX_CONCURRENCY)

    async def __aenter__(self) -> "StatsApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"Content-Type": "application/json", "X-Application": settings.APP_NAME},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ========================================================================
    # Auth
    # ========================================================================

    async def _current_tokens(self) -> Optional[TokenPair]:
        if self._tokens is None:
            self._tokens = await self.token_store.load()
        return self._tokens

    def _auth_headers(self, tokens: Optional[TokenPair]) -> Dict[str, str]:
        if tokens is None:
            return {}
        return {
            "X-Authorization": f"Bearer {tokens.token}",
            "X-Refresh-Token": tokens.refresh_token,
        }

    async def refresh_tokens(self, stale_token: Optional[str] = None) -> TokenPair:
        """
        Obtain a fresh token pair, sharing one in-flight refresh among callers.

        Args:
            stale_token: The token the caller was rejected with. If a refresh
                has already replaced it, the current pair is returned as-is.

        Returns:
            The current token pair
        """
        if stale_token is not None and self._tokens is not None and self._tokens.token != stale_token:
            return self._tokens

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> TokenPair:
        logger.info("Refreshing stats service tokens")
        try:
            pair = await self._post_login()
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        self._tokens = pair
        await self.token_store.save(pair)
        logger.info("Stats service tokens refreshed and saved")
        return pair

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_login(self) -> TokenPair:
        client = await self._get_client()
        response = await client.post("/v1/login/token", headers=self._auth_headers(await self._current_tokens()))
        response.raise_for_status()
        return TokenPair.model_validate(response.json())

    # ========================================================================
    # Transport
    # ========================================================================

    async def _send(self, method: str, path: str, params: Dict[str, Any]) -> tuple:
        client = await self._get_client()
        tokens = await self._current_tokens()
        async with self._semaphore:
            try:
                response = await client.request(method, path, params=params, headers=self._auth_headers(tokens))
            except httpx.HTTPError as e:
                raise StatsApiError(f"{method} {path} failed: {e}") from e
        return response, tokens

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            StatsApiNotFound: On 404
            StatsApiError: On network errors, other non-2xx statuses or non-JSON bodies
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}

        response, tokens = await self._send(method, path, params)
        if response.status_code in (401, 403):
            await self.refresh_tokens(tokens.token if tokens else None)
            response, _ = await self._send(method, path, params)

        if response.status_code == 404:
            raise StatsApiNotFound(f"{method} {path}: not found", status_code=404)
        if response.is_error:
            raise StatsApiError(
                f"{method} {path}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise StatsApiError(f"{method} {path}: invalid JSON body") from e

    # ========================================================================
    # Endpoints
    # ========================================================================

    async def query_by_username(self, username: str) -> Optional[PlayerDoc]:
        """
        Look a player up by name.

        The endpoint does prefix matching; only a case-insensitive exact match
        counts.

        Returns:
            The matching profile, or None
        """
        data = await self._request("GET", "/v1/players", {"usernameQuery": username})
        for match in data.get("matches") or []:
            if str(match.get("username", "")).lower() == username.lower():
                try:
                    return PlayerDoc.model_validate(match)
                except ValidationError as e:
                    raise StatsApiError(f"Malformed player document for {username!r}: {e}") from e
        return None

    async def search_ranking(
        self,
        player_id: str,
        entries_before: int = 0,
        entries_after: int = 0,
        region: Optional[str] = None,
    ) -> RankingSearch:
        """Leaderboard window around a player; Global means no region filter."""
        data = await self._request(
            "GET",
            f"/v1/ranked/leaderboard/search/{player_id}",
            {
                "entriesBefore": entries_before,
                "entriesAfter": entries_after,
                "specificRegion": None if region == GLOBAL_REGION else region,
            },
        )
        try:
            return RankingSearch.model_validate(data)
        except ValidationError as e:
            raise StatsApiError(f"Malformed ranking search for {player_id}: {e}") from e

    async def leaderboard_page(
        self,
        start_rank: int = 0,
        page_size: int = 25,
        region: Optional[str] = None,
    ) -> LeaderboardPage:
        data = await self._request(
            "GET",
            "/v1/ranked/leaderboard/players",
            {
                "startRank": start_rank,
                "pageSize": page_size,
                "specificRegion": None if region == GLOBAL_REGION else region,
            },
        )
        try:
            page = LeaderboardPage.from_payload(data or {})
        except ValidationError as e:
            raise StatsApiError(f"Malformed leaderboard page ({region}, {start_rank}): {e}") from e
        if page.skipped:
            logger.warning(f"Dropped {page.skipped} malformed row(s) from leaderboard page ({region}, {start_rank})")
        return page

    async def fetch_mastery(self, player_id: str) -> MasteryDoc:
        """Account mastery (level and XP)."""
        data = await self._request(
            "GET",
            f"/v1/mastery/{player_id}/player",
            {"entriesBefore": 0, "entriesAfter": 0},
        )
        try:
            return MasteryDoc.model_validate(data)
        except ValidationError as e:
            raise StatsApiError(f"Malformed mastery for {player_id}: {e}") from e

    async def fetch_character_stats(self, player_id: str) -> PlayerStatsDoc:
        data = await self._request("GET", f"/v1/stats/player-stats/{player_id}")
        return PlayerStatsDoc.from_payload(data or {})

    async def ensure_region(self, player_id: str, region_hint: Optional[str] = None) -> Optional[RegionMatch]:
        """
        Find the region a player is ranked in.

        Probes every region in REGION_PROBE_ORDER unless a specific non-Global
        hint is given. A Global hit ranked worse than
        GLOBAL_RANK_PREFERENCE_THRESHOLD is passed over in favour of the
        player's regional board.

        Returns:
            First matching region, or None when the player is unranked everywhere

        Raises:
            StatsApiError: If every probe failed, so "unranked" cannot be told
                apart from an upstream outage
        """
        if region_hint in (None, GLOBAL_REGION):
            regions = REGION_PROBE_ORDER
        else:
            regions = (region_hint,)

        last_error: Optional[StatsApiError] = None
        errors = 0
        for region in regions:
            try:
                result = await self.search_ranking(player_id, 0, 0, region)
            except StatsApiNotFound:
                continue
            except StatsApiError as e:
                errors += 1
                last_error = e
                logger.debug(f"Region probe {region} failed for {player_id}: {e}")
                continue

            if not result.players:
                continue
            top = result.players[0]
            if region == GLOBAL_REGION and top.rank > settings.GLOBAL_RANK_PREFERENCE_THRESHOLD:
                continue
            return RegionMatch(player=top, region=region)

        if last_error is not None and errors == len(regions):
            raise last_error
        return None
