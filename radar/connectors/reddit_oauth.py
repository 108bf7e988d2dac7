"""Reddit OAuth (client_credentials) client with rate-limit awareness.

One instance owns the bearer token and the last ``X-Ratelimit-*`` snapshot,
so connectors built with separate clients never share state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping, Optional

import aiohttp

from radar.connectors.base import SleepFn
from radar.connectors.errors import ConfigError, ConnectorError, RedditAPIError
from radar.connectors.http import HttpClient, HttpResponse
from radar.connectors.values import as_number, as_str

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
DEFAULT_USER_AGENT = "radar/0.1 (connectors/reddit)"
TOKEN_EXPIRY_BUFFER_SECONDS = 30
MAX_RATE_LIMIT_WAIT_SECONDS = 60
WAIT_PADDING_SECONDS = 0.25
MAX_THROTTLE_RETRIES = 5


@dataclass
class RateLimitSnapshot:
    used: Optional[float] = None
    remaining: Optional[float] = None
    reset_seconds: Optional[float] = None

    @classmethod
    def from_headers(cls, resp: HttpResponse) -> RateLimitSnapshot:
        return cls(
            used=as_number(resp.header("x-ratelimit-used")),
            remaining=as_number(resp.header("x-ratelimit-remaining")),
            reset_seconds=as_number(resp.header("x-ratelimit-reset")),
        )

    def is_empty(self) -> bool:
        return self.used is None and self.remaining is None and self.reset_seconds is None

    def to_dict(self) -> dict:
        return asdict(self)


def _retry_after_seconds(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _body(resp: HttpResponse) -> Any:
    if "application/json" in (resp.header("content-type") or ""):
        try:
            return resp.json()
        except ValueError:
            return resp.text
    return resp.text


class RedditOAuthClient:
    """Fetch JSON from the Reddit Data API with an app-only bearer token."""

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        sleep: Optional[SleepFn] = None,
        clock: Callable[[], float] = time.time,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.http = http or HttpClient()
        self.sleep: SleepFn = sleep or asyncio.sleep
        self.clock = clock
        self.env = env if env is not None else os.environ
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self.last_rate_limit: Optional[RateLimitSnapshot] = None
        self._rate_limit_reset_at: Optional[float] = None

    @property
    def user_agent(self) -> str:
        return as_str(self.env.get("REDDIT_USER_AGENT")) or DEFAULT_USER_AGENT

    def has_credentials(self) -> bool:
        return as_str(self.env.get("REDDIT_CLIENT_ID")) is not None

    def _credentials(self) -> tuple:
        client_id = as_str(self.env.get("REDDIT_CLIENT_ID"))
        # some app types have no secret
        client_secret = self.env.get("REDDIT_CLIENT_SECRET") or ""
        if not client_id:
            raise ConfigError(
                "Missing Reddit OAuth env. Set REDDIT_CLIENT_ID (and optionally "
                "REDDIT_CLIENT_SECRET) to use the OAuth Data API."
            )
        return client_id, client_secret

    def clear_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    def _update_rate_limit(self, resp: HttpResponse) -> None:
        snapshot = RateLimitSnapshot.from_headers(resp)
        if snapshot.is_empty():
            return
        self.last_rate_limit = snapshot
        if snapshot.reset_seconds is not None:
            self._rate_limit_reset_at = self.clock() + max(0.0, snapshot.reset_seconds)
        else:
            self._rate_limit_reset_at = None

    async def _wait_for_rate_limit(self) -> None:
        snapshot = self.last_rate_limit
        if not snapshot or snapshot.remaining is None or snapshot.remaining >= 1:
            return
        if not self._rate_limit_reset_at:
            return
        wait = self._rate_limit_reset_at - self.clock()
        if 0 < wait <= MAX_RATE_LIMIT_WAIT_SECONDS:
            logger.info("Reddit rate limit exhausted; waiting %.1fs for reset", wait)
            await self.sleep(wait + WAIT_PADDING_SECONDS)

    async def _fetch_token(self) -> str:
        client_id, client_secret = self._credentials()
        started = self.clock()
        resp = await self.http.post(
            TOKEN_URL,
            auth=aiohttp.BasicAuth(client_id, client_secret),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "User-Agent": self.user_agent,
                "Accept": "application/json",
            },
            data="grant_type=client_credentials",
        )
        payload = _body(resp)
        snippet = (payload if isinstance(payload, str) else json.dumps(payload))[:500]
        if not resp.ok:
            raise RedditAPIError(resp.status, TOKEN_URL, snippet)
        token = as_str(payload.get("access_token")) if isinstance(payload, dict) else None
        expires_in = as_number(payload.get("expires_in")) if isinstance(payload, dict) else None
        if not token or not expires_in:
            raise ConnectorError(f"Reddit OAuth token response missing access_token/expires_in: {snippet}")
        self._token = token
        self._token_expires_at = self.clock() + max(0.0, expires_in - TOKEN_EXPIRY_BUFFER_SECONDS)
        logger.debug("Fetched Reddit token in %.0fms", (self.clock() - started) * 1000)
        return token

    async def get_token(self) -> str:
        if self._token and self.clock() < self._token_expires_at:
            return self._token
        return await self._fetch_token()

    async def _get(self, url: str, token: str) -> HttpResponse:
        resp = await self.http.get(
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "User-Agent": self.user_agent,
                "Accept": "application/json",
            },
        )
        self._update_rate_limit(resp)
        return resp

    def _error(self, resp: HttpResponse, url: str) -> RedditAPIError:
        body = _body(resp)
        snippet = (body if isinstance(body, str) else json.dumps(body))[:500]
        snapshot = self.last_rate_limit.to_dict() if self.last_rate_limit else None
        return RedditAPIError(resp.status, url, snippet, rate_limit=snapshot)

    async def fetch_json(self, url: str) -> Any:
        """GET a Data API URL: waits out an exhausted quota, refreshes once on 401, honours short 429s."""
        for _ in range(MAX_THROTTLE_RETRIES + 1):
            await self._wait_for_rate_limit()
            resp = await self._get(url, await self.get_token())

            if resp.status == 401:
                self.clear_token()
                resp = await self._get(url, await self.get_token())
                if not resp.ok:
                    raise self._error(resp, url)
                return _body(resp)

            if resp.status == 429:
                retry_after = _retry_after_seconds(resp.header("retry-after"))
                if retry_after is not None and retry_after <= MAX_RATE_LIMIT_WAIT_SECONDS:
                    logger.warning("Reddit 429 for %s; retrying in %ss", url, retry_after)
                    await self.sleep(retry_after + WAIT_PADDING_SECONDS)
                    continue

            if not resp.ok:
                raise self._error(resp, url)
            return _body(resp)
        raise self._error(resp, url)
