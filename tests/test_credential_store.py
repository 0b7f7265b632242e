"""
Tests for the credential store adapters (in-memory and SQLAlchemy/SQLite).
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from connectors.models import Connection
from database.credential_store import InMemoryCredentialStore, SqlAlchemyCredentialStore
from database.session import build_engine, build_session_factory, create_tables

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_connection(provider="airtable", access="enc-at", **extra):
    values = dict(
        user_id="u1",
        provider=provider,
        encrypted_access_token=access,
        encrypted_refresh_token="enc-rt",
        expires_at=NOW + timedelta(hours=1),
    )
    values.update(extra)
    return Connection(**values)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request):
    if request.param == "memory":
        yield InMemoryCredentialStore()
        return

    engine = build_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield SqlAlchemyCredentialStore(build_session_factory(engine))
    await engine.dispose()


class TestCredentialStore:
    @pytest.mark.asyncio
    async def test_find_missing(self, store):
        assert await store.find("u1", "airtable") is None

    @pytest.mark.asyncio
    async def test_upsert_then_find(self, store):
        await store.upsert(_make_connection())
        conn = await store.find("u1", "airtable")

        assert conn.encrypted_access_token == "enc-at"
        assert conn.encrypted_refresh_token == "enc-rt"
        assert conn.expires_at == NOW + timedelta(hours=1)
        assert conn.needs_reauth is False
        assert conn.created_at is not None

    @pytest.mark.asyncio
    async def test_upsert_replaces_single_row(self, store):
        await store.upsert(_make_connection(access="first"))
        created = (await store.find("u1", "airtable")).created_at

        await store.upsert(
            _make_connection(access="second", needs_reauth=True, last_error="revoked")
        )

        rows = await store.list_for_user("u1")
        assert len(rows) == 1
        assert rows[0].encrypted_access_token == "second"
        assert rows[0].needs_reauth is True
        assert rows[0].last_error == "revoked"
        assert rows[0].created_at == created

    @pytest.mark.asyncio
    async def test_list_for_user_scoped(self, store):
        await store.upsert(_make_connection("airtable"))
        await store.upsert(_make_connection("google_sheets"))
        await store.upsert(_make_connection("airtable", user_id="u2"))

        providers = [c.provider for c in await store.list_for_user("u1")]
        assert providers == ["airtable", "google_sheets"]

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.upsert(_make_connection())
        assert await store.delete("u1", "airtable") is True
        assert await store.find("u1", "airtable") is None
        assert await store.delete("u1", "airtable") is False

    @pytest.mark.asyncio
    async def test_datetimes_are_timezone_aware(self, store):
        await store.upsert(_make_connection(last_attempt_at=NOW))
        conn = await store.find("u1", "airtable")
        assert conn.expires_at.tzinfo is not None
        assert conn.last_attempt_at == NOW
