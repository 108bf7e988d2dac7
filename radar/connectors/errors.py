"""Exception hierarchy shared by all connectors."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ConnectorError(Exception):
    """Base exception for connector failures."""


class ConfigError(ConnectorError, ValueError):
    """Source config is invalid; raised before any network call."""


class ProviderHTTPError(ConnectorError):
    """Provider answered with a non-success status after retries were exhausted."""

    def __init__(self, status: int, url: str, body: str = "", message: Optional[str] = None):
        self.status = status
        self.url = url
        self.body = (body or "")[:500]
        super().__init__(message or f"{url} returned {status}: {self.body}")


class RedditAPIError(ProviderHTTPError):
    """Reddit API failure carrying the last observed rate-limit snapshot."""

    def __init__(
        self,
        status: int,
        url: str,
        body: str = "",
        rate_limit: Optional[Dict[str, Any]] = None,
    ):
        self.rate_limit = rate_limit or {}
        message = f"Reddit API error ({status}) for {url}: {(body or '')[:500]}"
        if self.rate_limit:
            message += f" (rate limit: {self.rate_limit})"
        super().__init__(status, url, body, message=message)


class MalformedItemError(ConnectorError, ValueError):
    """Raw item lacks an identifier required to build a draft."""


class TransientHTTPError(ProviderHTTPError):
    """Status worth retrying (429, 5xx); surfaces as-is once retries run out."""
