"""Source connectors for the radar content pipeline.

Supported types: hn, rss, podcast, lobsters, polymarket, reddit, sec_edgar,
telegram.
"""

from radar.connectors.base import (
    BaseConnector,
    ContentItemDraft,
    FetchLimits,
    FetchParams,
    FetchResult,
)
from radar.connectors.errors import (
    ConfigError,
    ConnectorError,
    MalformedItemError,
    ProviderHTTPError,
    RedditAPIError,
)
from radar.connectors.http import HttpClient, HttpResponse
from radar.connectors.registry import available_source_types, build_connector, get_connector

__all__ = [
    "BaseConnector",
    "ContentItemDraft",
    "FetchLimits",
    "FetchParams",
    "FetchResult",
    "ConfigError",
    "ConnectorError",
    "MalformedItemError",
    "ProviderHTTPError",
    "RedditAPIError",
    "HttpClient",
    "HttpResponse",
    "available_source_types",
    "build_connector",
    "get_connector",
]
