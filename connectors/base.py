"""
BaseConnector — abstract interface for the OAuth2 refresh side of a provider.

Every provider (Google Sheets, Airtable) subclasses this and supplies its
identity, token endpoint and client credentials.  The authorization-code
exchange happens outside this package; connectors only refresh and revoke.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from config.settings import Settings, config
from connectors.errors import TokenEndpointError
from connectors.models import TokenResponse

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings or config
        self._transport = transport
        self._timeout = timeout if timeout is not None else self.settings.http_timeout

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'google_sheets', 'airtable'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes required by this connector."""
        ...

    @property
    @abstractmethod
    def token_url(self) -> str:
        ...

    @property
    def requests_per_second(self) -> float:
        """Dispatch ceiling for this provider's data API."""
        return self.settings.get_provider_rate_limits().get(self.provider_name, 5.0)

    # ── OAuth refresh ───────────────────────────────────────────────────

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a new access token.

        Raises
        ------
        TokenEndpointError
            The token endpoint answered with a non-2xx status.
        httpx.TransportError
            The endpoint could not be reached.
        """
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if client id and secret are both set."""
        client_id, client_secret = self._client_credentials()
        return bool(client_id and client_secret)

    @abstractmethod
    def _client_credentials(self) -> Tuple[str, str]:
        ...

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _post_token_request(
        self,
        data: Dict[str, str],
        auth: Optional[httpx.Auth] = None,
    ) -> TokenResponse:
        """POST a form-encoded grant to ``token_url`` and parse the reply."""
        async with self._http_client() as client:
            resp = await client.post(self.token_url, data=data, auth=auth)

        if resp.is_success:
            return TokenResponse.model_validate(resp.json())

        error_code, description = _parse_oauth_error(resp)
        logger.warning(
            "Token endpoint for %s returned %d (%s)",
            self.provider_name,
            resp.status_code,
            error_code or "no error code",
        )
        raise TokenEndpointError(
            resp.status_code,
            error_code,
            description,
            provider=self.provider_name,
        )


def _parse_oauth_error(resp: httpx.Response) -> Tuple[Optional[str], Optional[str]]:
    """Pull ``error`` / ``error_description`` out of an OAuth error body."""
    try:
        body: Any = resp.json()
    except ValueError:
        return None, resp.text or None

    if not isinstance(body, dict):
        return None, None

    error = body.get("error")
    # Some endpoints nest the error object: {"error": {"type": ..., "message": ...}}
    if isinstance(error, dict):
        return error.get("type") or error.get("status"), error.get("message")
    return error, body.get("error_description")
