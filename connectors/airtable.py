"""
AirtableConnector — OAuth2 refresh for Airtable.

Airtable's token endpoint authenticates confidential clients with HTTP
Basic credentials rather than form fields.  Airtable exposes no public
revocation endpoint, so ``revoke_token`` keeps the base-class behaviour.
"""

from __future__ import annotations

from typing import List, Tuple

import httpx

from connectors.base import BaseConnector
from connectors.models import AIRTABLE, TokenResponse

_AIRTABLE_TOKEN_URL = "https://airtable.com/oauth2/v1/token"


class AirtableConnector(BaseConnector):
    """OAuth2 connector for Airtable."""

    @property
    def provider_name(self) -> str:
        return AIRTABLE

    @property
    def display_name(self) -> str:
        return "Airtable"

    @property
    def scopes(self) -> List[str]:
        return [
            "data.records:read",
            "data.records:write",
            "schema.bases:read",
            "schema.bases:write",
        ]

    @property
    def token_url(self) -> str:
        return _AIRTABLE_TOKEN_URL

    def _client_credentials(self) -> Tuple[str, str]:
        return self.settings.airtable_client_id, self.settings.airtable_client_secret

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        client_id, client_secret = self._client_credentials()
        return await self._post_token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=httpx.BasicAuth(client_id, client_secret),
        )
