"""
Stats service integration.

Key components:
- StatsApiClient: async client with single-flight token refresh
- TokenStore: credential persistence (database or in-memory)
- schemas: pydantic models for upstream payloads
"""
from playersync.services.stats.client import (
    StatsApiClient,
    StatsApiError,
    StatsApiNotFound,
    TokenRefreshError,
)
from playersync.services.stats.token_store import DatabaseTokenStore, InMemoryTokenStore, TokenStore

__all__ = [
    "StatsApiClient",
    "StatsApiError",
    "StatsApiNotFound",
    "TokenRefreshError",
    "TokenStore",
    "DatabaseTokenStore",
    "InMemoryTokenStore",
]
