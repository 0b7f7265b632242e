"""
ConnectorRegistry — discovers and provides access to all connectors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from config.settings import Settings
from connectors.airtable import AirtableConnector
from connectors.base import BaseConnector
from connectors.errors import UnsupportedProvider
from connectors.google_sheets import GoogleSheetsConnector

logger = logging.getLogger(__name__)


def default_connectors(settings: Optional[Settings] = None) -> List[BaseConnector]:
    """All known connectors — add new ones here."""
    return [
        GoogleSheetsConnector(settings),
        AirtableConnector(settings),
    ]


class ConnectorRegistry:
    """Singleton registry for all OAuth connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            cls._instance._known = []
            cls._instance._discovered = False
        return cls._instance

    def discover(
        self,
        settings: Optional[Settings] = None,
        connectors: Optional[Sequence[BaseConnector]] = None,
    ) -> None:
        """Register all configured connectors."""
        if self._discovered:
            return
        self._known = list(connectors) if connectors is not None else default_connectors(settings)
        for conn in self._known:
            if conn.is_configured():
                self._connectors[conn.provider_name] = conn
                logger.info(
                    "Connector registered: %s (%s)",
                    conn.display_name,
                    conn.provider_name,
                )
            else:
                logger.warning(
                    "Connector %s skipped — not configured (missing client_id/secret)",
                    conn.provider_name,
                )
        self._discovered = True

    def register(self, connector: BaseConnector) -> None:
        """Register a connector regardless of its configuration."""
        self._connectors[connector.provider_name] = connector
        if connector not in self._known:
            self._known.append(connector)

    def get(self, provider: str) -> BaseConnector:
        """
        Get a connector by provider name.

        Raises
        ------
        UnsupportedProvider – nothing registered under ``provider``
        """
        connector = self._connectors.get(provider)
        if connector is None:
            raise UnsupportedProvider(
                f"No connector registered for provider '{provider}'",
                provider=provider,
            )
        return connector

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "configured": c.is_configured(),
            }
            for c in self._known
        ]

    def list_configured(self) -> List[str]:
        """Return names of registered connectors."""
        return list(self._connectors.keys())

    # ── reset (for tests) ──────────────────────────────────────────────

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None
