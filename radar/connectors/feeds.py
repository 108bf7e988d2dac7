"""Feed parsing and incremental selection shared by RSS-family connectors.

feedparser handles RSS 2.0, RSS 1.0/RDF and Atom; this module flattens its
entries into plain dicts and applies the guid/date cursor policy.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import feedparser

from radar.connectors.base import parse_datetime, to_iso
from radar.connectors.errors import ConfigError, ProviderHTTPError
from radar.connectors.http import HttpClient
from radar.connectors.values import as_bool, as_str, as_str_list, clamp_int, pick

logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"
MAX_RECENT_GUIDS = 200
_INT_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class FeedSourceConfig:
    """Config shared by rss and podcast sources."""

    feed_url: str
    max_item_count: int = 50
    prefer_content_encoded: bool = True

    @classmethod
    def from_dict(cls, config: Dict[str, Any], kind: str = "RSS") -> FeedSourceConfig:
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url:
            raise ConfigError(f'{kind} source config must include non-empty "feedUrl" or "feed_url"')
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=as_bool(
                pick(config, "prefer_content_encoded", "preferContentEncoded"), True
            ),
        )


@dataclass
class FeedCursor:
    last_published_at: Optional[str] = None
    recent_guids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> FeedCursor:
        return cls(
            last_published_at=as_str(cursor.get("last_published_at")),
            recent_guids=as_str_list(cursor.get("recent_guids") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_published_at:
            out["last_published_at"] = self.last_published_at
        if self.recent_guids:
            out["recent_guids"] = list(self.recent_guids)
        return out


def parse_duration(value: Any) -> Optional[str]:
    """iTunes duration (seconds, MM:SS or HH:MM:SS) as a seconds string."""
    text = as_str(value)
    if not text:
        return None
    if _INT_RE.match(text):
        return str(int(text))
    parts = text.split(":")
    if not all(_INT_RE.match(p.strip()) for p in parts):
        return None
    nums = [int(p) for p in parts]
    if len(nums) == 3:
        return str(nums[0] * 3600 + nums[1] * 60 + nums[2])
    if len(nums) == 2:
        return str(nums[0] * 60 + nums[1])
    return None


def _entry_datetime(entry: Any) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    return parse_datetime(entry.get("published") or entry.get("updated"))


def _links(entry: Any) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Return (page link, enclosure link). Atom rel=alternate wins for the page link."""
    alternate = None
    enclosure = None
    first = None
    for link in entry.get("links") or []:
        href = as_str(link.get("href"))
        if not href:
            continue
        rel = link.get("rel") or "alternate"
        if rel == "enclosure":
            enclosure = enclosure or link
            continue
        first = first or href
        if rel == "alternate" and alternate is None:
            alternate = href
    return alternate or as_str(entry.get("link")) or first, enclosure


def parse_entry(entry: Any) -> Dict[str, Any]:
    """Flatten one feedparser entry into a plain dict."""
    link, enclosure_link = _links(entry)
    content_html = None
    for content in entry.get("content") or []:
        content_html = as_str(content.get("value"))
        if content_html:
            break
    enclosures = entry.get("enclosures") or []
    enclosure = enclosures[0] if enclosures else enclosure_link or {}
    published = _entry_datetime(entry)
    return {
        "guid": as_str(entry.get("id")),
        "link": link,
        "title": as_str(entry.get("title")),
        "author": as_str(entry.get("author")) or as_str(entry.get("itunes_author")),
        "published": published,
        "content_html": content_html,
        "summary": as_str(entry.get("summary")),
        "categories": [as_str(t.get("term")) for t in entry.get("tags") or [] if as_str(t.get("term"))],
        "enclosure_url": as_str(enclosure.get("href") or enclosure.get("url")),
        "enclosure_type": as_str(enclosure.get("type")),
        "enclosure_length": as_str(enclosure.get("length")),
        "duration": parse_duration(entry.get("itunes_duration")),
        "episode_number": as_str(entry.get("itunes_episode")),
        "season": as_str(entry.get("itunes_season")),
    }


def feed_type(version: str) -> str:
    if version.startswith("atom"):
        return "atom"
    if version in ("rss090", "rss10"):
        return "rdf"
    return "rss" if version else "unknown"


def parse_feed(xml_text: str) -> Tuple[str, List[Dict[str, Any]]]:
    parsed = feedparser.parse(xml_text)
    entries = getattr(parsed, "entries", [])
    if getattr(parsed, "bozo", False) and not entries:
        logger.warning("Feed parse produced no entries: %s", parsed.get("bozo_exception"))
    return feed_type(parsed.get("version") or ""), [parse_entry(e) for e in entries]


async def fetch_feed(http: HttpClient, feed_url: str, user_agent: str) -> Tuple[str, List[Dict[str, Any]]]:
    """GET the feed and parse it off the event loop."""
    resp = await http.get(feed_url, headers={"User-Agent": user_agent, "Accept": FEED_ACCEPT})
    if not resp.ok:
        raise ProviderHTTPError(
            resp.status, feed_url, resp.text,
            message=f"Feed fetch failed ({resp.status}) for {feed_url}: {resp.text[:500]}",
        )
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, parse_feed, resp.text)


@dataclass
class Selection:
    entries: List[Dict[str, Any]]
    cursor: FeedCursor


def select_new_entries(
    entries: List[Dict[str, Any]], cursor: FeedCursor, max_items: int
) -> Selection:
    """Apply the cursor: skip seen guids, and guid-less entries not newer than the high-water mark."""
    last_published = parse_datetime(cursor.last_published_at)
    seen = set(cursor.recent_guids)
    selected: List[Dict[str, Any]] = []
    newest: Optional[datetime] = None
    new_guids: List[str] = []

    for entry in entries:
        if len(selected) >= max_items:
            break
        guid = entry.get("guid")
        if guid and guid in seen:
            continue
        published = entry.get("published")
        if last_published and published and published <= last_published and not guid:
            continue
        if published and (newest is None or published > newest):
            newest = published
        if guid:
            new_guids.append(guid)
        selected.append(entry)

    merged: List[str] = []
    for guid in new_guids + cursor.recent_guids:
        if guid not in merged:
            merged.append(guid)
            if len(merged) >= MAX_RECENT_GUIDS:
                break

    return Selection(
        entries=selected,
        cursor=FeedCursor(
            last_published_at=to_iso(newest) if newest else cursor.last_published_at,
            recent_guids=merged,
        ),
    )


def choose_content(entry: Dict[str, Any], prefer_content_encoded: bool) -> Tuple[Optional[str], Optional[str]]:
    """Return (content_html, content_text) for the raw item."""
    if prefer_content_encoded:
        return entry["content_html"] or entry["summary"], entry["summary"]
    return entry["content_html"], entry["summary"] or entry["content_html"]
