"""
Token stores for the stats service credentials.

The client never holds credentials in module state: it loads them from a
store on first use and saves refreshed pairs back to it.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy.orm import Session

from playersync.core.config import settings
from playersync.models import ServiceToken
from playersync.services.stats.schemas import TokenPair

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Persistence for a bearer/refresh token pair."""

    @abstractmethod
    async def load(self) -> Optional[TokenPair]:
        ...

    @abstractmethod
    async def save(self, pair: TokenPair) -> None:
        ...


class InMemoryTokenStore(TokenStore):
    """Keeps the pair in memory; seeded from settings when not given."""

    def __init__(self, pair: Optional[TokenPair] = None):
        if pair is None and settings.STATS_API_TOKEN:
            pair = TokenPair(token=settings.STATS_API_TOKEN, refresh_token=settings.STATS_API_REFRESH_TOKEN)
        self._pair = pair

    async def load(self) -> Optional[TokenPair]:
        return self._pair

    async def save(self, pair: TokenPair) -> None:
        self._pair = pair


class DatabaseTokenStore(TokenStore):
    """
    Stores the pair in the service_tokens table.

    Uses its own short-lived session so a token refresh never commits or rolls
    back a resolution's unit of work. Blocking database calls run in a worker
    thread.
    """

    def __init__(self, session_factory: Callable[[], Session], service: Optional[str] = None):
        self.session_factory = session_factory
        self.service = service or settings.TOKEN_SERVICE_NAME

    def _load_sync(self) -> Optional[TokenPair]:
        db = self.session_factory()
        try:
            row = db.get(ServiceToken, self.service)
            if row is None:
                if settings.STATS_API_TOKEN:
                    return TokenPair(
                        token=settings.STATS_API_TOKEN,
                        refresh_token=settings.STATS_API_REFRESH_TOKEN,
                    )
                return None
            return TokenPair(token=row.token, refresh_token=row.refresh_token)
        finally:
            db.close()

    def _save_sync(self, pair: TokenPair) -> None:
        db = self.session_factory()
        try:
            row = db.get(ServiceToken, self.service)
            if row is None:
                db.add(ServiceToken(service=self.service, token=pair.token, refresh_token=pair.refresh_token))
            else:
                row.token = pair.token
                row.refresh_token = pair.refresh_token
            db.commit()
            logger.debug(f"Saved refreshed tokens for {self.service}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def load(self) -> Optional[TokenPair]:
        return await asyncio.to_thread(self._load_sync)

    async def save(self, pair: TokenPair) -> None:
        await asyncio.to_thread(self._save_sync, pair)
