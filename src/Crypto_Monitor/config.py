"""Runtime configuration read from environment variables.

All durations are in seconds. Unset variables fall back to the defaults
below; malformed numeric values are logged and also fall back.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_DB_PATH: Final[str] = "data/crypto_monitor.db"
DEFAULT_COINGECKO_BASE_URL: Final[str] = "https://api.coingecko.com/api/v3"
DEFAULT_RATE_LIMIT_PER_MINUTE: Final[int] = 30  # free tier
DEFAULT_REQUEST_TIMEOUT: Final[float] = 10.0
DEFAULT_RETRY_AFTER: Final[float] = 60.0
DEFAULT_PRICE_UPDATE_INTERVAL: Final[float] = 10.0
DEFAULT_HISTORY_SAMPLE_EVERY: Final[int] = 6  # once a minute at 10s ticks
DEFAULT_CLEANUP_INTERVAL: Final[float] = 24 * 60 * 60
DEFAULT_HISTORY_RETENTION_DAYS: Final[int] = 30
DEFAULT_STALE_RETENTION: Final[float] = 24 * 60 * 60
DEFAULT_SUPPORTED_COINS: Final[tuple[str, ...]] = (
    "bitcoin",
    "ethereum",
    "binancecoin",
    "cardano",
    "solana",
    "polkadot",
    "dogecoin",
    "avalanche-2",
    "polygon",
    "chainlink",
)


class EmailSettings(BaseModel):
    """SMTP settings for alert emails. ``host`` unset disables email."""

    model_config = ConfigDict(frozen=True)

    host: str | None = None
    port: int = 587
    use_tls: bool = False
    username: str | None = None
    password: str | None = None
    from_name: str = "Crypto Monitor"
    from_address: str = "alerts@crypto-monitor.local"

    @property
    def enabled(self) -> bool:
        return bool(self.host)


class Settings(BaseModel):
    """Application settings shared by the CLI, web app, and scheduler."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 3001
    db_path: str = DEFAULT_DB_PATH
    client_url: str = "http://localhost:3000"

    coingecko_api_key: str | None = None
    coingecko_base_url: str = DEFAULT_COINGECKO_BASE_URL
    coingecko_rate_limit: int = Field(default=DEFAULT_RATE_LIMIT_PER_MINUTE, gt=0)
    coingecko_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    coingecko_default_retry_after: float = Field(default=DEFAULT_RETRY_AFTER, ge=0)

    price_update_interval: float = Field(default=DEFAULT_PRICE_UPDATE_INTERVAL, gt=0)
    history_sample_every: int = Field(default=DEFAULT_HISTORY_SAMPLE_EVERY, ge=1)
    cleanup_interval: float = Field(default=DEFAULT_CLEANUP_INTERVAL, gt=0)
    history_retention_days: int = Field(default=DEFAULT_HISTORY_RETENTION_DAYS, ge=1)
    cache_stale_retention: float = Field(default=DEFAULT_STALE_RETENTION, ge=0)

    supported_coins: tuple[str, ...] = DEFAULT_SUPPORTED_COINS
    email: EmailSettings = EmailSettings()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ

        coins_raw = env.get("SUPPORTED_COINS", "")
        coins = tuple(c.strip().lower() for c in coins_raw.split(",") if c.strip())

        email = EmailSettings(
            host=env.get("EMAIL_HOST") or None,
            port=_env_int(env, "EMAIL_PORT", 587),
            use_tls=env.get("EMAIL_SECURE", "").lower() == "true",
            username=env.get("EMAIL_USERNAME") or None,
            password=env.get("EMAIL_PASSWORD") or None,
            from_name=env.get("EMAIL_FROM_NAME", "Crypto Monitor"),
            from_address=env.get("EMAIL_FROM", "alerts@crypto-monitor.local"),
        )

        return cls(
            host=env.get("HOST", "127.0.0.1"),
            port=_env_int(env, "PORT", 3001),
            db_path=env.get("DB_PATH", DEFAULT_DB_PATH),
            client_url=env.get("CLIENT_URL", "http://localhost:3000"),
            coingecko_api_key=env.get("COINGECKO_API_KEY") or None,
            coingecko_base_url=env.get("COINGECKO_BASE_URL", DEFAULT_COINGECKO_BASE_URL),
            coingecko_rate_limit=_env_int(
                env, "COINGECKO_RATE_LIMIT", DEFAULT_RATE_LIMIT_PER_MINUTE
            ),
            coingecko_timeout=_env_float(env, "COINGECKO_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            coingecko_default_retry_after=_env_float(
                env, "COINGECKO_RETRY_AFTER", DEFAULT_RETRY_AFTER
            ),
            price_update_interval=_env_float(
                env, "PRICE_UPDATE_INTERVAL", DEFAULT_PRICE_UPDATE_INTERVAL
            ),
            history_sample_every=_env_int(
                env, "HISTORY_SAMPLE_EVERY", DEFAULT_HISTORY_SAMPLE_EVERY
            ),
            cleanup_interval=_env_float(env, "CLEANUP_INTERVAL", DEFAULT_CLEANUP_INTERVAL),
            history_retention_days=_env_int(
                env, "HISTORY_RETENTION_DAYS", DEFAULT_HISTORY_RETENTION_DAYS
            ),
            cache_stale_retention=_env_float(
                env, "CACHE_STALE_RETENTION", DEFAULT_STALE_RETENTION
            ),
            supported_coins=coins or DEFAULT_SUPPORTED_COINS,
            email=email,
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using default %d", name, raw, default)
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r, using default %s", name, raw, default)
        return default
