"""Connector contract and the data types that flow through it."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from radar.connectors.http import HttpClient

SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_MAX_ITEMS = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(val: Any) -> Optional[datetime]:
    """Parse ISO strings, RFC 822 dates or datetimes into aware UTC datetimes."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        try:
            from dateutil.parser import parse
            dt = parse(str(val))
        except (ValueError, TypeError, OverflowError):
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def from_unix(seconds: Any) -> Optional[datetime]:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class FetchLimits:
    max_items: int = DEFAULT_MAX_ITEMS


@dataclass(frozen=True)
class FetchParams:
    """Everything a connector needs for one fetch invocation."""

    user_id: str
    source_id: str
    source_type: str
    config: Dict[str, Any] = field(default_factory=dict)
    cursor: Dict[str, Any] = field(default_factory=dict)
    limits: FetchLimits = field(default_factory=FetchLimits)
    window_start: datetime = field(default_factory=utcnow)
    window_end: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FetchParams:
        """Build params from the scheduler's JSON shape (camelCase or snake_case)."""

        def get(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        limits = get("limits", "limits") or {}
        max_items = limits.get("max_items", limits.get("maxItems", DEFAULT_MAX_ITEMS))
        now = utcnow()
        return cls(
            user_id=str(get("user_id", "userId", "")),
            source_id=str(get("source_id", "sourceId", "")),
            source_type=str(get("source_type", "sourceType", "")),
            config=dict(get("config", "config") or {}),
            cursor=dict(get("cursor", "cursor") or {}),
            limits=FetchLimits(max_items=int(max_items)),
            window_start=parse_datetime(get("window_start", "windowStart")) or now,
            window_end=parse_datetime(get("window_end", "windowEnd")) or now,
        )


@dataclass
class FetchResult:
    raw_items: List[Any] = field(default_factory=list)
    next_cursor: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ContentItemDraft:
    """Canonical item shape every normalizer produces."""

    source_type: str
    external_id: Optional[str]
    title: Optional[str] = None
    body_text: Optional[str] = None
    canonical_url: Optional[str] = None
    published_at: Optional[str] = None
    author: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BaseConnector(ABC):
    """Abstract base for source connectors.

    ``fetch`` may do network I/O and returns raw items plus the cursor for the
    next run. ``normalize`` is pure: it maps one raw item to a draft.
    """

    source_type: str = ""

    def __init__(self, http: Optional[HttpClient] = None, sleep: Optional[SleepFn] = None) -> None:
        self.http = http or HttpClient()
        self.sleep: SleepFn = sleep or asyncio.sleep

    @abstractmethod
    async def fetch(self, params: FetchParams) -> FetchResult:
        ...

    @abstractmethod
    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        ...
