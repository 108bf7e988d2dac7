"""Generic RSS/Atom connector with guid + published-date cursoring."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from radar.connectors.base import BaseConnector, ContentItemDraft, FetchParams, FetchResult, to_iso
from radar.connectors.feeds import (
    FeedCursor,
    FeedSourceConfig,
    choose_content,
    fetch_feed,
    select_new_entries,
)
from radar.connectors.text import clamp_text, strip_html
from radar.connectors.values import as_str, as_str_list

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 50_000
MAX_RAW_CONTENT_CHARS = 10_000


class RssConnector(BaseConnector):
    """Fetch entries from one feed URL; emits plain-dict raw entries."""

    source_type = "rss"
    user_agent = "radar/0.1 (rss connector)"

    def parse_config(self, config: Dict[str, Any]) -> FeedSourceConfig:
        return FeedSourceConfig.from_dict(config, kind="RSS")

    def build_raw(self, entry: Dict[str, Any], config: FeedSourceConfig) -> Dict[str, Any]:
        content_html, content_text = choose_content(entry, config.prefer_content_encoded)
        return {
            "guid": entry["guid"],
            "link": entry["link"],
            "title": entry["title"],
            "author": entry["author"],
            "published_at": to_iso(entry["published"]),
            "content_html": content_html,
            "content_text": content_text,
            "categories": entry["categories"],
            "feed_url": config.feed_url,
        }

    async def fetch(self, params: FetchParams) -> FetchResult:
        config = self.parse_config(params.config)
        cursor = FeedCursor.from_dict(params.cursor)
        kind, entries = await fetch_feed(self.http, config.feed_url, self.user_agent)
        selection = select_new_entries(entries, cursor, config.max_item_count)
        logger.info(
            "%s %s: %d entries, %d after cursor",
            self.source_type, config.feed_url, len(entries), len(selection.entries),
        )
        return FetchResult(
            raw_items=[self.build_raw(e, config) for e in selection.entries],
            next_cursor=selection.cursor.to_dict(),
            meta={
                "feed_type": kind,
                "entries_found": len(entries),
                "entries_after_cursor": len(selection.entries),
                "feed_url": config.feed_url,
            },
        )

    def metadata(self, rec: Dict[str, Any]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {}
        if rec["feed_url"]:
            meta["feed_url"] = rec["feed_url"]
        if rec["categories"]:
            meta["categories"] = rec["categories"]
        if rec["guid"]:
            meta["guid"] = rec["guid"]
        return meta

    def bounded_raw(self, rec: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "guid": rec["guid"],
            "link": rec["link"],
            "title": rec["title"],
            "author": rec["author"],
            "published_at": rec["published_at"],
            "content_html": clamp_text(rec["content_html"], MAX_RAW_CONTENT_CHARS),
            "content_text": clamp_text(rec["content_text"], MAX_RAW_CONTENT_CHARS),
            "categories": rec["categories"],
            "feed_url": rec["feed_url"] or "",
        }

    def read_raw(self, raw: Any) -> Dict[str, Any]:
        """Coerce a raw entry (possibly round-tripped through JSON) into known fields."""
        rec = raw if isinstance(raw, dict) else {}
        out: Dict[str, Any] = {
            key: as_str(rec.get(key))
            for key in ("guid", "link", "title", "author", "published_at",
                        "content_html", "content_text", "feed_url")
        }
        out["categories"] = as_str_list(rec.get("categories")) if isinstance(rec.get("categories"), list) else []
        return out

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        rec = self.read_raw(raw)
        body_text: Optional[str] = None
        if rec["content_html"]:
            body_text = strip_html(rec["content_html"])
        elif rec["content_text"]:
            body_text = strip_html(rec["content_text"])
        body_text = clamp_text(body_text, MAX_BODY_CHARS) or None

        return ContentItemDraft(
            title=rec["title"],
            body_text=body_text,
            canonical_url=rec["link"],
            source_type=self.source_type,
            external_id=rec["guid"],
            published_at=rec["published_at"],
            author=rec["author"],
            metadata=self.metadata(rec),
            raw=self.bounded_raw(rec),
        )
