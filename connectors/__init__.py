"""
connectors — OAuth credential layer for the upstream data providers.

Provides a generic connector framework that handles:
  • Per-user token storage & auto-refresh with a bounded retry budget
  • Fernet encryption of tokens at rest
  • Structured error classification (re-auth vs. quota vs. transient)
  • Revocation / disconnect

Each provider (Google Sheets, Airtable) is a subclass of BaseConnector.
"""
