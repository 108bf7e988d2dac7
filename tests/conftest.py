"""Shared fixtures: a scripted HttpClient, a recording sleep, and params factory."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from radar.connectors.base import FetchLimits, FetchParams
from radar.connectors.http import HttpClient, HttpResponse

WINDOW_START = datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2025, 1, 7, 0, 0, tzinfo=timezone.utc)


def json_response(payload: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    merged = {"content-type": "application/json"}
    merged.update({k.lower(): v for k, v in (headers or {}).items()})
    return HttpResponse(status=status, text=json.dumps(payload), headers=merged)


def text_response(text: str, status: int = 200, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(
        status=status, text=text, headers={k.lower(): v for k, v in (headers or {}).items()}
    )


class FakeHttp(HttpClient):
    """Route requests by URL substring to queued responses (or exceptions).

    The last queued entry for a route repeats once the queue is drained.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: List[Tuple[str, List[Any]]] = []
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, fragment: str, *responses: Any) -> FakeHttp:
        self.routes.append((fragment, list(responses)))
        return self

    def urls(self, fragment: str = "") -> List[str]:
        return [c["url"] for c in self.calls if fragment in c["url"]]

    async def request(self, method: str, url: str, **kwargs: Any) -> HttpResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            for fragment, queue in self.routes:
                if fragment in url:
                    entry = queue.pop(0) if len(queue) > 1 else queue[0]
                    if isinstance(entry, Exception):
                        raise entry
                    return entry
            return text_response("not found", status=404)
        finally:
            self.in_flight -= 1


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


def make_params(
    source_type: str,
    config: Optional[Dict[str, Any]] = None,
    cursor: Optional[Dict[str, Any]] = None,
    max_items: int = 50,
    window_start: datetime = WINDOW_START,
    window_end: datetime = WINDOW_END,
) -> FetchParams:
    return FetchParams(
        user_id="user-1",
        source_id=f"{source_type}-source",
        source_type=source_type,
        config=config or {},
        cursor=cursor or {},
        limits=FetchLimits(max_items=max_items),
        window_start=window_start,
        window_end=window_end,
    )
