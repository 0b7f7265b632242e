"""
Credential store adapters.

The token manager only depends on the ``CredentialStore`` protocol:
at most one ``Connection`` per (user_id, provider), atomic upsert on that
key, last writer wins.  Two implementations ship here:

  • ``InMemoryCredentialStore``  – process-local dict (tests, embedding).
  • ``SqlAlchemyCredentialStore`` – the ``user_connections`` table, upserted
    with the dialect's native ``INSERT … ON CONFLICT DO UPDATE``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.models import Connection
from database.models import UserConnection

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    async def find(self, user_id: str, provider: str) -> Optional[Connection]:
        ...

    async def upsert(self, connection: Connection) -> Connection:
        ...

    async def delete(self, user_id: str, provider: str) -> bool:
        ...

    async def list_for_user(self, user_id: str) -> List[Connection]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCredentialStore:
    """Dict-backed store; copies on the way in and out."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], Connection] = {}

    async def find(self, user_id: str, provider: str) -> Optional[Connection]:
        row = self._rows.get((user_id, provider))
        return row.model_copy() if row else None

    async def upsert(self, connection: Connection) -> Connection:
        key = (connection.user_id, connection.provider)
        now = _utcnow()
        existing = self._rows.get(key)
        stored = connection.model_copy(
            update={
                "created_at": existing.created_at if existing else (connection.created_at or now),
                "updated_at": now,
            }
        )
        self._rows[key] = stored
        return stored.model_copy()

    async def delete(self, user_id: str, provider: str) -> bool:
        return self._rows.pop((user_id, provider), None) is not None

    async def list_for_user(self, user_id: str) -> List[Connection]:
        return [
            row.model_copy()
            for (uid, _), row in sorted(self._rows.items())
            if uid == user_id
        ]


class SqlAlchemyCredentialStore:
    """``user_connections`` table behind an async session factory."""

    _UPDATABLE = (
        "access_token",
        "refresh_token",
        "expires_at",
        "needs_reauth",
        "last_error",
        "last_attempt_at",
        "scope",
        "updated_at",
    )

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find(self, user_id: str, provider: str) -> Optional[Connection]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserConnection).where(
                    UserConnection.user_id == user_id,
                    UserConnection.provider == provider,
                )
            )
            row = result.scalar_one_or_none()
            return _to_domain(row) if row else None

    async def upsert(self, connection: Connection) -> Connection:
        now = _utcnow()
        values = {
            "connection_id": uuid.uuid4(),
            "user_id": connection.user_id,
            "provider": connection.provider,
            "access_token": connection.encrypted_access_token,
            "refresh_token": connection.encrypted_refresh_token,
            "expires_at": connection.expires_at,
            "needs_reauth": connection.needs_reauth,
            "last_error": connection.last_error,
            "last_attempt_at": connection.last_attempt_at,
            "scope": connection.scope,
            "created_at": connection.created_at or now,
            "updated_at": now,
        }

        async with self._session_factory() as session:
            async with session.begin():
                dialect = session.get_bind().dialect.name
                stmt = _insert_for(dialect)(UserConnection).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[UserConnection.user_id, UserConnection.provider],
                    set_={name: stmt.excluded[name] for name in self._UPDATABLE},
                )
                await session.execute(stmt)

        stored = await self.find(connection.user_id, connection.provider)
        if stored is None:  # pragma: no cover - deleted between write and read
            raise RuntimeError(
                f"Connection {connection.user_id}/{connection.provider} vanished after upsert"
            )
        return stored

    async def delete(self, user_id: str, provider: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(UserConnection).where(
                        UserConnection.user_id == user_id,
                        UserConnection.provider == provider,
                    )
                )
                deleted = result.rowcount > 0
        return deleted

    async def list_for_user(self, user_id: str) -> List[Connection]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserConnection)
                .where(UserConnection.user_id == user_id)
                .order_by(UserConnection.provider)
            )
            return [_to_domain(row) for row in result.scalars().all()]


def _insert_for(dialect: str):
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upsert is not supported on dialect '{dialect}'")


def _to_domain(row: UserConnection) -> Connection:
    return Connection(
        user_id=row.user_id,
        provider=row.provider,
        encrypted_access_token=row.access_token,
        encrypted_refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        needs_reauth=bool(row.needs_reauth),
        last_error=row.last_error,
        last_attempt_at=row.last_attempt_at,
        scope=row.scope,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
