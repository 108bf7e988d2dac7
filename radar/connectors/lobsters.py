"""Lobste.rs connector: a tag-aware RSS source with story-specific metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from radar.connectors.feeds import FeedSourceConfig
from radar.connectors.rss import RssConnector
from radar.connectors.values import as_str, clamp_int, pick

DEFAULT_FEED_URL = "https://lobste.rs/rss"
TAG_FEED_URL = "https://lobste.rs/t/{tag}.rss"
_COMMENTS_RE = re.compile(r"(\d+)\s+comments?", re.IGNORECASE)


@dataclass(frozen=True)
class LobstersSourceConfig:
    feed_url: str = DEFAULT_FEED_URL
    tag: Optional[str] = None
    max_item_count: int = 50

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> LobstersSourceConfig:
        tag = as_str(config.get("tag"))
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url:
            feed_url = TAG_FEED_URL.format(tag=tag) if tag else DEFAULT_FEED_URL
        return cls(
            feed_url=feed_url,
            tag=tag,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
        )

    def to_feed_config(self) -> FeedSourceConfig:
        # Lobste.rs puts the useful text (and comment count) in description
        return FeedSourceConfig(
            feed_url=self.feed_url,
            max_item_count=self.max_item_count,
            prefer_content_encoded=False,
        )


def parse_comment_count(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = _COMMENTS_RE.search(text)
    return int(match.group(1)) if match else None


def extract_domain(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


class LobstersConnector(RssConnector):
    source_type = "lobsters"
    user_agent = "radar/0.1 (lobsters connector)"

    def parse_config(self, config: Dict[str, Any]) -> FeedSourceConfig:
        return LobstersSourceConfig.from_dict(config).to_feed_config()

    def metadata(self, rec: Dict[str, Any]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {}
        if rec["feed_url"]:
            meta["feed_url"] = rec["feed_url"]
        if rec["guid"]:
            meta["guid"] = rec["guid"]
        if rec["categories"]:
            meta["tags"] = rec["categories"]
        if rec["author"]:
            meta["submitter"] = rec["author"]
        domain = extract_domain(rec["link"])
        if domain:
            meta["domain"] = domain
        comments = parse_comment_count(rec["content_text"] or rec["content_html"])
        if comments is not None:
            meta["comment_count"] = comments
        return meta
