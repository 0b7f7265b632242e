"""
Domain records for OAuth connections.

``Connection`` is the storage-agnostic view of one row in the credential
store; the SQLAlchemy row lives in ``database.models.UserConnection``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

GOOGLE_SHEETS = "google_sheets"
AIRTABLE = "airtable"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on the way back)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class Connection(BaseModel):
    user_id: str
    provider: str
    encrypted_access_token: str
    encrypted_refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    needs_reauth: bool = False
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    scope: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("expires_at", "last_attempt_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class TokenResponse(BaseModel):
    """Token endpoint payload (authorization-code or refresh grant)."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scope: Optional[str] = None
    token_type: str = "Bearer"


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NEEDS_REAUTH = "needs_reauth"


class ConnectionHealth(BaseModel):
    provider: str
    status: ConnectionStatus
    expires_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    needs_reauth: bool = False


class TokenRefreshResult(BaseModel):
    success: bool
    access_token: Optional[str] = None
    error: Optional[str] = None
    needs_reauth: bool = False
