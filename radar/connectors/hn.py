"""Hacker News connector (Firebase REST API)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from radar.connectors.base import (
    BaseConnector,
    ContentItemDraft,
    FetchParams,
    FetchResult,
    from_unix,
    to_iso,
)
from radar.connectors.errors import ConnectorError, ProviderHTTPError
from radar.connectors.text import strip_html
from radar.connectors.values import as_str

logger = logging.getLogger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"
HEADERS = {"User-Agent": "radar/0.1 (hn connector)", "Accept": "application/json"}
FEEDS = {"top": "topstories", "new": "newstories"}
BATCH_SIZE = 10


@dataclass(frozen=True)
class HnSourceConfig:
    feed: str = "top"

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> HnSourceConfig:
        feed = as_str(config.get("feed"))
        return cls(feed=feed if feed in FEEDS else "top")


def _typed(rec: Dict[str, Any], key: str, kind: type) -> Any:
    value = rec.get(key)
    if kind is int:
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None
    return value if isinstance(value, kind) else None


def _string(rec: Dict[str, Any], key: str) -> Optional[str]:
    value = rec.get(key)
    return as_str(value) if isinstance(value, str) else None


class HnConnector(BaseConnector):
    source_type = "hn"

    async def _fetch_json(self, url: str) -> Any:
        resp = await self.http.get(url, headers=HEADERS)
        if not resp.ok:
            raise ProviderHTTPError(
                resp.status, url, resp.text,
                message=f"HN API fetch failed ({resp.status}): {resp.text[:500]}",
            )
        return resp.json()

    async def _fetch_story_ids(self, feed: str) -> List[int]:
        feed_name = FEEDS[feed]
        ids = await self._fetch_json(f"{HN_API_BASE}/{feed_name}.json")
        if not isinstance(ids, list):
            raise ConnectorError(f"HN API returned unexpected format for {feed_name}")
        return [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]

    async def _fetch_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        data = await self._fetch_json(f"{HN_API_BASE}/item/{item_id}.json")
        if not isinstance(data, dict):
            return None
        return {
            "id": data["id"] if isinstance(data.get("id"), int) else item_id,
            "type": data["type"] if isinstance(data.get("type"), str) else "unknown",
            "by": _typed(data, "by", str),
            "time": _typed(data, "time", int),
            "title": _typed(data, "title", str),
            "text": _typed(data, "text", str),
            "url": _typed(data, "url", str),
            "score": _typed(data, "score", int),
            "descendants": _typed(data, "descendants", int),
        }

    async def _fetch_item_or_none(self, item_id: int) -> Optional[Dict[str, Any]]:
        try:
            return await self._fetch_item(item_id)
        except Exception as e:
            logger.debug("HN item %s failed: %s", item_id, e)
            return None

    async def _fetch_items(self, ids: List[int]) -> List[Dict[str, Any]]:
        """Resolve ids in sequential batches of BATCH_SIZE concurrent requests."""
        stories: List[Dict[str, Any]] = []
        for start in range(0, len(ids), BATCH_SIZE):
            batch = ids[start:start + BATCH_SIZE]
            results = await asyncio.gather(*(self._fetch_item_or_none(i) for i in batch))
            stories.extend(r for r in results if r and r["type"] == "story")
        return stories

    async def fetch(self, params: FetchParams) -> FetchResult:
        config = HnSourceConfig.from_dict(params.config)
        story_ids = await self._fetch_story_ids(config.feed)
        ids_to_fetch = story_ids[:max(0, int(params.limits.max_items))]
        raw_items = await self._fetch_items(ids_to_fetch)
        logger.info(
            "HN %s: %d ids available, %d requested, %d stories",
            config.feed, len(story_ids), len(ids_to_fetch), len(raw_items),
        )
        return FetchResult(
            raw_items=raw_items,
            next_cursor={"last_run_at": to_iso(params.window_end)},
            meta={
                "feed": config.feed,
                "story_ids_available": len(story_ids),
                "story_ids_requested": len(ids_to_fetch),
                "stories_fetched": len(raw_items),
            },
        )

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        rec = raw if isinstance(raw, dict) else {}
        number = _typed(rec, "id", int)
        item_id = int(number) if number is not None else None
        item_type = _string(rec, "type")
        title = _string(rec, "title")
        text = _string(rec, "text")
        url = _string(rec, "url")
        by = _string(rec, "by")
        time = _typed(rec, "time", int)
        score = _typed(rec, "score", int)
        descendants = _typed(rec, "descendants", int)

        canonical_url = url or (HN_ITEM_URL.format(id=item_id) if item_id is not None else None)
        body_text = strip_html(text) if text else None

        metadata: Dict[str, Any] = {}
        if item_type:
            metadata["type"] = item_type
        if score is not None:
            metadata["score"] = score
        if descendants is not None:
            metadata["descendants"] = descendants
        if url:
            metadata["url"] = url

        return ContentItemDraft(
            title=title,
            body_text=body_text or None,
            canonical_url=canonical_url,
            source_type=self.source_type,
            external_id=str(item_id) if item_id is not None else None,
            published_at=to_iso(from_unix(time)),
            author=by,
            metadata=metadata,
            raw={
                "id": item_id or 0,
                "type": item_type or "unknown",
                "by": by,
                "time": time,
                "title": title,
                "text": text,
                "url": url,
                "score": score,
                "descendants": descendants,
            },
        )
