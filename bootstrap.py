"""
BaseSync connector core — process wiring.

Call ``configure_logging()`` once, then ``build_token_manager()`` to get a
ready ``TokenManager``; API clients pick their rate limiter up from the
registry configured here.
"""

from __future__ import annotations

import logging
import sys
from datetime import timedelta
from typing import Optional

from config.settings import Settings, config
from connectors.encryption import TokenCipher
from connectors.registry import ConnectorRegistry, default_connectors
from connectors.token_manager import TokenManager
from database.credential_store import CredentialStore, SqlAlchemyCredentialStore
from database.session import build_engine, build_session_factory
from utils.rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or config
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        stream=sys.stdout,
    )
    for _noisy in ("httpcore", "httpx", "sqlalchemy.engine", "aiosqlite", "asyncpg"):
        logging.getLogger(_noisy).setLevel(logging.WARNING)


def init_rate_limiters(settings: Optional[Settings] = None) -> RateLimiterRegistry:
    """Configure one limiter per known connector at its provider rate."""
    settings = settings or config
    limits = {c.provider_name: c.requests_per_second for c in default_connectors(settings)}
    registry = RateLimiterRegistry()
    registry.configure(
        limits,
        max_queue_size=settings.rate_limiter_max_queue or None,
        task_timeout=settings.rate_limiter_task_timeout,
    )
    return registry


def build_token_manager(
    settings: Optional[Settings] = None,
    store: Optional[CredentialStore] = None,
    cipher: Optional[TokenCipher] = None,
) -> TokenManager:
    """
    Discover connectors, configure rate limiters and assemble a TokenManager.

    Without an explicit ``store`` the SQL store on ``settings.database_url``
    is used.  Building never opens a connection.
    """
    settings = settings or config

    registry = ConnectorRegistry()
    registry.discover(settings)
    init_rate_limiters(settings)

    if store is None:
        store = SqlAlchemyCredentialStore(
            build_session_factory(build_engine(settings.database_url))
        )
    if cipher is None:
        cipher = TokenCipher(settings.token_encryption_key)

    manager = TokenManager(
        store,
        cipher,
        registry,
        expiry_buffer=timedelta(seconds=settings.token_expiry_buffer_seconds),
        max_refresh_attempts=settings.max_refresh_attempts,
        refresh_retry_delay=settings.refresh_retry_delay,
    )
    logger.info(
        "Token manager ready — connectors: %s",
        ", ".join(registry.list_configured()) or "none",
    )
    return manager
