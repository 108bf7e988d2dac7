"""Thin aiohttp wrapper shared by connectors.

Connectors take an ``HttpClient`` instance so that tests can swap in a fake
without patching aiohttp. Connection-level failures are retried here; status
handling (429, 5xx, auth) belongs to each connector because every provider
signals it differently.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import aiohttp
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
USER_AGENT = "radar/0.1 (content connectors)"


@dataclass
class HttpResponse:
    """Buffered HTTP response: status, lower-cased headers and body text."""

    status: int
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        return json.loads(self.text)


class HttpClient:
    """Issue requests with a fresh ClientSession per call and buffer the body."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = USER_AGENT) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        reraise=True,
    )
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        data: Any = None,
        json_body: Any = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ) -> HttpResponse:
        merged = {"User-Agent": self.user_agent}
        merged.update(headers or {})
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        logger.debug("%s %s params=%s", method, url, params)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(
                method,
                url,
                params=params,
                headers=merged,
                data=data,
                json=json_body,
                auth=auth,
            ) as resp:
                body = await resp.text(errors="replace")
                return HttpResponse(
                    status=resp.status,
                    text=body,
                    headers={k.lower(): v for k, v in resp.headers.items()},
                    url=str(resp.url),
                )

    async def get(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request("POST", url, **kwargs)
