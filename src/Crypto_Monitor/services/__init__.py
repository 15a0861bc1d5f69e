"""Price ingestion, caching, alerting and fan-out services.

Re-exports all public service classes so consumers can import directly:
    from Crypto_Monitor.services import CoinGeckoService, IngestionScheduler
"""

from Crypto_Monitor.services.alert_evaluator import evaluate, evaluate_rules, find_snapshot
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.services.broadcast import BroadcastHub, Subscriber
from Crypto_Monitor.services.cache import CacheEntry, CacheNamespace, ServiceCache
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.services.health import HealthService
from Crypto_Monitor.services.mailer import (
    EmailService,
    NullEmailService,
    SmtpEmailService,
    create_email_service,
)
from Crypto_Monitor.services.rate_limiter import RateLimiter
from Crypto_Monitor.services.scheduler import IngestionScheduler, TickResult

__all__ = [
    # Infrastructure
    "CacheEntry",
    "CacheNamespace",
    "RateLimiter",
    "ServiceCache",
    # Data services
    "CoinGeckoService",
    # Alerting
    "AlertService",
    "evaluate",
    "evaluate_rules",
    "find_snapshot",
    # Fan-out
    "BroadcastHub",
    "EmailService",
    "NullEmailService",
    "SmtpEmailService",
    "Subscriber",
    "create_email_service",
    # Scheduling and health
    "HealthService",
    "IngestionScheduler",
    "TickResult",
]
