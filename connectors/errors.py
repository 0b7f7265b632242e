"""
Connector error taxonomy and classification.

Callers distinguish three outcomes:

  • ``ReauthRequired``  → the stored credential is unusable; prompt the user
    to reconnect.
  • ``ProviderApiError`` with ``is_quota_error`` → upstream throttling; try
    again later.
  • anything else → generic "retry" prompt.

Classification works on structured fields (HTTP status + provider error
codes) so the same rules apply to every provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

# Provider error codes that signal throttling / quota exhaustion.
QUOTA_ERROR_CODES = frozenset(
    {
        "RESOURCE_EXHAUSTED",       # Google RPC status
        "rateLimitExceeded",        # Google legacy reason
        "userRateLimitExceeded",
        "quotaExceeded",
        "RATE_LIMIT_REACHED",       # Airtable
    }
)

# Provider error codes that signal an authentication / permission problem.
AUTH_ERROR_CODES = frozenset(
    {
        "UNAUTHENTICATED",
        "PERMISSION_DENIED",
        "AUTHENTICATION_REQUIRED",  # Airtable
    }
)

# OAuth token-endpoint error codes after which retrying cannot help.
REAUTH_ERROR_CODES = frozenset(
    {
        "invalid_grant",
        "invalid_client",
        "unauthorized_client",
        "unauthorized",
        "access_denied",
    }
)

# Keywords matched against token-endpoint 4xx descriptions.
REAUTH_KEYWORDS = ("invalid_grant", "invalid_client", "revoked", "expired", "unauthorized")


@dataclass(frozen=True)
class ErrorClassification:
    auth_error: bool
    quota_error: bool
    retryable: bool


def classify_api_error(
    status_code: Optional[int],
    error_codes: Iterable[str] = (),
) -> ErrorClassification:
    """
    Map an HTTP status and provider error codes to a classification.

    ``status_code=None`` means the request never got a response (network
    failure) and is always retryable.
    """
    codes = set(error_codes)
    quota = status_code == 429 or bool(codes & QUOTA_ERROR_CODES)
    auth = not quota and (status_code in (401, 403) or bool(codes & AUTH_ERROR_CODES))
    retryable = quota or (not auth and (status_code is None or status_code >= 500))
    return ErrorClassification(auth_error=auth, quota_error=quota, retryable=retryable)


class ConnectorError(Exception):
    """Base class for everything raised by the connector core."""

    def __init__(
        self,
        message: str,
        *,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.provider = provider


class UnsupportedProvider(ConnectorError):
    """No connector is registered for the requested provider."""


class ConnectionNotFound(ConnectorError):
    """The user never connected this provider (or disconnected it)."""


class ReauthRequired(ConnectorError):
    """The stored credential is unusable and the user must reconnect."""

    def __init__(self, reason: str, **kwargs: Any) -> None:
        super().__init__(reason, **kwargs)
        self.reason = reason


class RefreshFailed(ConnectorError):
    """The refresh retry budget was exhausted on transient errors."""

    def __init__(self, reason: str, *, attempts: int, **kwargs: Any) -> None:
        super().__init__(reason, **kwargs)
        self.reason = reason
        self.attempts = attempts


class TokenEndpointError(ConnectorError):
    """The OAuth token endpoint answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        error_code: Optional[str] = None,
        description: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        detail = description or error_code or "no error detail"
        super().__init__(
            f"Token endpoint returned {status_code}: {error_code or 'error'} ({detail})",
            **kwargs,
        )
        self.status_code = status_code
        self.error_code = error_code
        self.description = description


class ProviderApiError(ConnectorError):
    """A data-API call failed; carries the upstream classification."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_codes: Iterable[str] = (),
        raw_body: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.error_codes: Tuple[str, ...] = tuple(error_codes)
        self.raw_body = raw_body
        self.classification = classify_api_error(status_code, self.error_codes)

    @property
    def is_auth_error(self) -> bool:
        return self.classification.auth_error

    @property
    def is_quota_error(self) -> bool:
        return self.classification.quota_error

    @property
    def retryable(self) -> bool:
        return self.classification.retryable


def is_reauth_error(exc: BaseException) -> bool:
    """
    Return True if a refresh failure means the grant itself is dead.

    Only token-endpoint rejections qualify; network failures, 5xx and 429
    are transient.
    """
    if not isinstance(exc, TokenEndpointError):
        return False
    if exc.error_code and exc.error_code.lower() in REAUTH_ERROR_CODES:
        return True
    if exc.status_code == 401:
        return True
    if 400 <= exc.status_code < 500 and exc.status_code != 429:
        text = f"{exc.error_code or ''} {exc.description or ''}".lower()
        return any(keyword in text for keyword in REAUTH_KEYWORDS)
    return False


def user_facing_message(exc: BaseException) -> str:
    """Translate an error into the message shown to end users."""
    if isinstance(exc, (ReauthRequired, ConnectionNotFound)):
        return "Please reconnect your account to continue."
    if isinstance(exc, ProviderApiError) and exc.is_quota_error:
        return "The service is busy right now. Please try again later."
    return "Something went wrong. Please retry."
