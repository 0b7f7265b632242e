"""
Tests for process wiring.
"""

from datetime import timedelta

import pytest

from bootstrap import build_token_manager, init_rate_limiters
from config.settings import Settings
from connectors.encryption import TokenCipher
from connectors.registry import ConnectorRegistry
from database.credential_store import InMemoryCredentialStore, SqlAlchemyCredentialStore
from utils.rate_limiter import RateLimiterRegistry


def _make_settings(**overrides) -> Settings:
    values = {
        "token_encryption_key": TokenCipher.generate_key(),
        "google_client_id": "g-id",
        "google_client_secret": "g-secret",
        "token_expiry_buffer_seconds": 120,
        "max_refresh_attempts": 5,
        "airtable_requests_per_second": 2.0,
        "database_url": "sqlite+aiosqlite://",
    }
    values.update(overrides)
    return Settings(**values)


class TestBootstrap:
    def setup_method(self):
        ConnectorRegistry.reset()
        RateLimiterRegistry.reset()

    def teardown_method(self):
        ConnectorRegistry.reset()
        RateLimiterRegistry.reset()

    def test_init_rate_limiters(self):
        registry = init_rate_limiters(_make_settings(rate_limiter_max_queue=50))
        assert registry.get("airtable").min_interval == pytest.approx(0.5)
        assert registry.get("google_sheets").max_queue_size == 50

    def test_rate_limits_follow_connectors(self):
        registry = init_rate_limiters(_make_settings(google_requests_per_second=4.0))
        assert set(registry.list_providers()) == {"google_sheets", "airtable"}
        assert registry.get("google_sheets").requests_per_second == 4.0

    def test_build_token_manager_with_memory_store(self):
        manager = build_token_manager(_make_settings(), store=InMemoryCredentialStore())

        assert manager.expiry_buffer == timedelta(seconds=120)
        assert manager.max_refresh_attempts == 5
        assert ConnectorRegistry().list_configured() == ["google_sheets"]
        assert "airtable" in RateLimiterRegistry().list_providers()

    def test_defaults_to_sql_store(self):
        manager = build_token_manager(_make_settings())
        assert isinstance(manager._store, SqlAlchemyCredentialStore)

    def test_missing_encryption_key(self):
        with pytest.raises(ValueError):
            build_token_manager(_make_settings(token_encryption_key=""), store=InMemoryCredentialStore())
