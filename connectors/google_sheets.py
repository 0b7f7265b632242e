"""
GoogleSheetsConnector — OAuth2 refresh and revocation for Google Sheets.

Client credentials travel in the form body, as Google's token endpoint
expects for web-app clients.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import httpx

from connectors.base import BaseConnector
from connectors.models import GOOGLE_SHEETS, TokenResponse

logger = logging.getLogger(__name__)

_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class GoogleSheetsConnector(BaseConnector):
    """OAuth2 connector for Google Sheets (and the Drive file listing)."""

    @property
    def provider_name(self) -> str:
        return GOOGLE_SHEETS

    @property
    def display_name(self) -> str:
        return "Google Sheets"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
        ]

    @property
    def token_url(self) -> str:
        return _GOOGLE_TOKEN_URL

    def _client_credentials(self) -> Tuple[str, str]:
        return self.settings.google_client_id, self.settings.google_client_secret

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        client_id, client_secret = self._client_credentials()
        return await self._post_token_request(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token at Google."""
        try:
            async with self._http_client() as client:
                resp = await client.post(
                    _GOOGLE_REVOKE_URL,
                    params={"token": access_token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.TransportError as exc:
            logger.warning("Google token revocation failed: %s", exc)
            return False
        return resp.status_code == 200
