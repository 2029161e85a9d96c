"""
Application configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required secrets for production:
- DATABASE_URL
- STATS_API_TOKEN / STATS_API_REFRESH_TOKEN (seed credentials for the stats service)
"""
import os
import logging
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Get the project root directory (3 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./playersync.db"

# Probe order used when a player's region is unknown
REGION_PROBE_ORDER = (
    "Global",
    "NorthAmerica",
    "SouthAmerica",
    "Europe",
    "Asia",
    "Oceania",
    "JapaneseLanguageText",
)


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "player-sync"
    APP_VERSION: str = "1.0.0"

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    # Remote stats service
    STATS_API_BASE_URL: str = "https://prometheus-proxy.odysseyinteractive.gg/api"
    STATS_API_TIMEOUT: float = 30.0
    STATS_API_MAX_CONCURRENCY: int = 4  # Simultaneous in-flight requests
    STATS_API_TOKEN: str = ""
    STATS_API_REFRESH_TOKEN: str = ""
    TOKEN_SERVICE_NAME: str = "ODYSSEY"

    # Identity resolution
    AMBIGUOUS_USERNAME_MAX_LENGTH: int = 1  # Names this short skip the username endpoint
    GLOBAL_RANK_PREFERENCE_THRESHOLD: int = 100  # Global hits ranked worse fall through to regions
    UNRANKED_RANK: int = 10001

    # Leaderboard bulk job
    LEADERBOARD_PAGE_SIZE: int = 25
    LEADERBOARD_MAX_RANK: int = 9999
    LEADERBOARD_ITEM_DELAY: float = 0.05  # Seconds between players, respects upstream rate limits
    LEADERBOARD_REGIONS_STR: str = "Global,NorthAmerica,Europe,Asia,SouthAmerica,Oceania,JapaneseLanguageText"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @property
    def LEADERBOARD_REGIONS(self) -> list[str]:
        """Regions walked by the leaderboard job, parsed from the comma-separated env var."""
        return [r.strip() for r in self.LEADERBOARD_REGIONS_STR.split(",") if r.strip()]

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required secrets are set for the current environment.

        Returns:
            List of missing secret names (empty if all present)
        """
        missing = []

        if self.is_production():
            if not self.DATABASE_URL or self.DATABASE_URL == DEFAULT_DATABASE_URL:
                missing.append("DATABASE_URL")
            if not self.STATS_API_TOKEN:
                missing.append("STATS_API_TOKEN")
            if not self.STATS_API_REFRESH_TOKEN:
                missing.append("STATS_API_REFRESH_TOKEN")

        return missing


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT}
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        return default_env

    logger.debug(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()


def check_required_secrets(current: Settings) -> list[str]:
    """
    Warn about missing secrets, refusing to start in production without them.

    Raises:
        ValueError: In production when any required secret is missing
    """
    missing = current.validate_required_secrets()
    if missing:
        logger.warning(f"Missing required secrets for {current.ENVIRONMENT}: {', '.join(missing)}")
        if current.is_production():
            raise ValueError(
                f"Cannot start in production with missing secrets: {', '.join(missing)}. "
                f"Please set these environment variables in .env.production"
            )
    return missing


# Validate secrets on startup
check_required_secrets(settings)
