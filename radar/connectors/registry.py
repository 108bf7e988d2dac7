"""Connector registry: map a source type to its connector."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type

from radar.connectors.base import BaseConnector
from radar.connectors.hn import HnConnector
from radar.connectors.lobsters import LobstersConnector
from radar.connectors.podcast import PodcastConnector
from radar.connectors.polymarket import PolymarketConnector
from radar.connectors.reddit import RedditConnector
from radar.connectors.rss import RssConnector
from radar.connectors.sec_edgar import SecEdgarConnector
from radar.connectors.telegram import TelegramConnector

CONNECTORS: Dict[str, Type[BaseConnector]] = {
    cls.source_type: cls
    for cls in (
        HnConnector,
        RssConnector,
        PodcastConnector,
        LobstersConnector,
        PolymarketConnector,
        RedditConnector,
        SecEdgarConnector,
        TelegramConnector,
    )
}

_instances: Dict[str, BaseConnector] = {}


def _key(source_type: Any) -> str:
    return str(source_type or "").lower().strip()


def available_source_types() -> List[str]:
    return sorted(CONNECTORS)


def get_connector(source_type: str) -> Optional[BaseConnector]:
    """Return the shared connector for a source type, or None when unknown."""
    key = _key(source_type)
    cls = CONNECTORS.get(key)
    if cls is None:
        return None
    if key not in _instances:
        _instances[key] = cls()
    return _instances[key]


def build_connector(source_type: str, **deps: Any) -> BaseConnector:
    """Build a fresh connector, passing injected dependencies (http, sleep, env, ...).

    Raises ValueError for unknown types.
    """
    cls = CONNECTORS.get(_key(source_type))
    if cls is None:
        raise ValueError(
            f"Unknown source type {source_type!r}; expected one of {', '.join(available_source_types())}"
        )
    return cls(**deps)
