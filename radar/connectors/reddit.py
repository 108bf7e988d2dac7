"""Reddit connector: subreddit listings through the OAuth Data API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from radar.connectors.base import (
    BaseConnector,
    ContentItemDraft,
    FetchParams,
    FetchResult,
    SleepFn,
    from_unix,
    to_iso,
)
from radar.connectors.http import HttpClient
from radar.connectors.reddit_oauth import RedditOAuthClient
from radar.connectors.text import clamp_text
from radar.connectors.values import as_bool, as_number, as_str, as_str_list, clamp_int, pick

logger = logging.getLogger(__name__)

API_BASE = "https://oauth.reddit.com"
WEB_BASE = "https://www.reddit.com"
LISTINGS = ("new", "top", "hot")
TIME_FILTERS = ("hour", "day", "week", "month", "year", "all")
MAX_PAGES = 10
MAX_BODY_CHARS = 50_000


@dataclass(frozen=True)
class RedditSourceConfig:
    subreddits: Tuple[str, ...] = ()
    listing: str = "new"
    time_filter: str = "day"
    include_comments: bool = False
    max_comment_count: int = 0
    include_nsfw: bool = False

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> RedditSourceConfig:
        subreddits = as_str_list(config.get("subreddits")) or as_str_list(config.get("subreddit"))
        listing = as_str(config.get("listing"))
        time_filter = as_str(pick(config, "time_filter", "timeFilter"))
        return cls(
            subreddits=tuple(s[2:] if s.lower().startswith("r/") else s for s in subreddits),
            listing=listing if listing in LISTINGS else "new",
            time_filter=time_filter if time_filter in TIME_FILTERS else "day",
            include_comments=as_bool(pick(config, "include_comments", "includeComments"), False),
            max_comment_count=clamp_int(pick(config, "max_comment_count", "maxCommentCount"), 0, 50, 0),
            include_nsfw=as_bool(pick(config, "include_nsfw", "includeNsfw"), False),
        )


def listing_url(subreddit: str, listing: str, limit: int, after: Optional[str], time_filter: str) -> str:
    url = f"{API_BASE}/r/{quote(subreddit)}/{listing}?raw_json=1&limit={max(1, min(100, limit))}"
    if after:
        url += f"&after={quote(after)}"
    if listing == "top":
        url += f"&t={time_filter}"
    return url


class RedditConnector(BaseConnector):
    source_type = "reddit"

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        sleep: Optional[SleepFn] = None,
        oauth: Optional[RedditOAuthClient] = None,
    ) -> None:
        super().__init__(http=http, sleep=sleep)
        self.oauth = oauth or RedditOAuthClient(http=self.http, sleep=self.sleep)

    async def _top_comments(self, permalink: str, limit: int) -> List[str]:
        url = f"{API_BASE}{permalink.rstrip('/')}?raw_json=1&depth=1&limit={max(1, min(50, limit))}"
        payload = await self.oauth.fetch_json(url)
        if not isinstance(payload, list) or len(payload) < 2 or not isinstance(payload[1], dict):
            return []
        children = (payload[1].get("data") or {}).get("children") or []
        out: List[str] = []
        for child in children:
            if not isinstance(child, dict) or child.get("kind") != "t1":
                continue
            body = as_str((child.get("data") or {}).get("body"))
            if body:
                out.append(body)
            if len(out) >= limit:
                break
        return out

    async def _fetch_subreddit(
        self, subreddit: str, config: RedditSourceConfig, last_seen: float, budget: int
    ) -> Tuple[List[Dict[str, Any]], float, int]:
        """Page one subreddit; for the ``new`` listing stop at the high-water mark."""
        incremental = config.listing == "new"
        items: List[Dict[str, Any]] = []
        newest = last_seen
        after: Optional[str] = None
        requests = 0
        for _ in range(MAX_PAGES):
            if len(items) >= budget:
                break
            url = listing_url(subreddit, config.listing, budget - len(items), after, config.time_filter)
            payload = await self.oauth.fetch_json(url)
            requests += 1
            data = payload.get("data") if isinstance(payload, dict) else None
            children = (data or {}).get("children") or []
            if not children:
                break
            reached_seen = False
            for child in children:
                if len(items) >= budget:
                    break
                post = child.get("data") if isinstance(child, dict) else None
                if not isinstance(post, dict):
                    continue
                created = as_number(post.get("created_utc"))
                if incremental and created is not None and created <= last_seen:
                    reached_seen = True
                    break
                if created is not None and created > newest:
                    newest = created
                if post.get("over_18") and not config.include_nsfw:
                    continue
                items.append(post)
            after = as_str((data or {}).get("after"))
            if reached_seen or not after:
                break
        return items, newest, requests

    async def fetch(self, params: FetchParams) -> FetchResult:
        config = RedditSourceConfig.from_dict(params.config)
        if not config.subreddits:
            return FetchResult(
                next_cursor=dict(params.cursor),
                meta={"error": "No subreddits configured", "errorCode": "no_subreddits"},
            )
        if not self.oauth.has_credentials():
            logger.warning("Reddit source %s skipped: REDDIT_CLIENT_ID not set", params.source_id)
            return FetchResult(
                next_cursor=dict(params.cursor),
                meta={"error": "REDDIT_CLIENT_ID not configured", "errorCode": "missing_credentials"},
            )

        stored = params.cursor.get("subreddits") if isinstance(params.cursor.get("subreddits"), dict) else {}
        next_state: Dict[str, Any] = {k: v for k, v in stored.items() if isinstance(v, dict)}
        max_items = max(0, int(params.limits.max_items))
        raw_items: List[Dict[str, Any]] = []
        requests = 0

        for subreddit in config.subreddits:
            budget = max_items - len(raw_items)
            if budget <= 0:
                break
            key = subreddit.lower()
            last_seen = as_number((next_state.get(key) or {}).get("last_seen_created_utc")) or 0
            items, newest, used = await self._fetch_subreddit(subreddit, config, last_seen, budget)
            requests += used
            raw_items.extend(items)
            if config.listing == "new" and newest > 0:
                next_state[key] = {"last_seen_created_utc": newest}

        if config.include_comments and config.max_comment_count > 0:
            for post in raw_items:
                permalink = as_str(post.get("permalink"))
                if not permalink:
                    continue
                post["_top_comments"] = await self._top_comments(permalink, config.max_comment_count)
                requests += 1

        next_cursor = dict(params.cursor)
        if next_state:
            next_cursor["subreddits"] = next_state
        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor,
            meta={
                "requests": requests,
                "listing": config.listing,
                "subreddits": list(config.subreddits),
                "incremental": config.listing == "new",
                "rate_limit": self.oauth.last_rate_limit.to_dict() if self.oauth.last_rate_limit else None,
            },
        )

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        post = raw if isinstance(raw, dict) else {}
        post_id = as_str(post.get("id"))
        name = as_str(post.get("name")) or (f"t3_{post_id}" if post_id else None)
        permalink = as_str(post.get("permalink"))
        link = as_str(post.get("url"))
        selftext = as_str(post.get("selftext"))
        comments = [c for c in post.get("_top_comments") or [] if isinstance(c, str)]

        body_parts = [selftext] if selftext else []
        if comments:
            body_parts.append("Top comments:\n" + "\n---\n".join(comments))
        body_text = clamp_text("\n\n".join(body_parts), MAX_BODY_CHARS) or None

        metadata: Dict[str, Any] = {
            "subreddit": as_str(post.get("subreddit")),
            "score": as_number(post.get("score")),
            "num_comments": as_number(post.get("num_comments")),
            "upvote_ratio": as_number(post.get("upvote_ratio")),
            "over_18": bool(post.get("over_18")),
            "is_self": bool(post.get("is_self")),
        }
        if link and not post.get("is_self"):
            metadata["link_url"] = link
        if as_str(post.get("link_flair_text")):
            metadata["flair"] = post["link_flair_text"]
        if comments:
            metadata["top_comments"] = comments

        author = as_str(post.get("author"))
        return ContentItemDraft(
            title=as_str(post.get("title")),
            body_text=body_text,
            canonical_url=f"{WEB_BASE}{permalink}" if permalink else link,
            source_type=self.source_type,
            external_id=name,
            published_at=to_iso(from_unix(post.get("created_utc"))),
            author=author if author and author != "[deleted]" else None,
            metadata={k: v for k, v in metadata.items() if v is not None},
            raw={
                "id": post_id,
                "name": name,
                "subreddit": post.get("subreddit"),
                "title": post.get("title"),
                "permalink": permalink,
                "url": link,
                "created_utc": post.get("created_utc"),
                "selftext": clamp_text(selftext, 10_000),
            },
        )
