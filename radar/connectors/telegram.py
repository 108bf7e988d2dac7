"""Telegram connector: public channel posts via the Bot API ``getUpdates``.

The bot must be an admin of each channel to receive its posts, and the token
comes from ``TELEGRAM_BOT_TOKEN``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

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
from radar.connectors.text import clamp_text
from radar.connectors.values import as_bool, as_number, as_str, as_str_list, clamp_int, pick

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
ALLOWED_UPDATES = ["channel_post", "edited_channel_post"]
MAX_LIMIT = 100
MAX_THROTTLE_RETRIES = 3
MAX_BODY_CHARS = 10_000
MEDIA_FIELDS = ("photo", "video", "audio", "document", "voice")


@dataclass(frozen=True)
class TelegramSourceConfig:
    channels: Tuple[str, ...] = ()
    max_messages_per_channel: int = 100
    include_media_captions: bool = True
    include_forwards: bool = True

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> TelegramSourceConfig:
        channels: List[str] = []
        for name in as_str_list(config.get("channels")):
            name = name.lstrip("@").strip().lower()
            if name and name not in channels:
                channels.append(name)
        return cls(
            channels=tuple(channels),
            max_messages_per_channel=clamp_int(
                pick(config, "max_messages_per_channel", "maxMessagesPerChannel"), 1, 100, 100
            ),
            include_media_captions=as_bool(
                pick(config, "include_media_captions", "includeMediaCaptions"), True
            ),
            include_forwards=as_bool(pick(config, "include_forwards", "includeForwards"), True),
        )


class TelegramThrottled(Exception):
    """getUpdates answered 429 with a ``retry_after`` hint."""

    def __init__(self, payload: Dict[str, Any], retry_after: float) -> None:
        super().__init__(f"Telegram rate limited; retry after {retry_after}s")
        self.payload = payload
        self.retry_after = retry_after


def _wait_retry_after(retry_state: Any) -> float:
    exc = retry_state.outcome.exception()
    return exc.retry_after if isinstance(exc, TelegramThrottled) else 0.0


def has_media(message: Dict[str, Any]) -> bool:
    photo = message.get("photo")
    if isinstance(photo, list) and photo:
        return True
    return any(message.get(key) for key in MEDIA_FIELDS[1:])


def message_type(message: Dict[str, Any]) -> str:
    photo = message.get("photo")
    if isinstance(photo, list) and photo:
        return "photo"
    for key in MEDIA_FIELDS[1:]:
        if message.get(key):
            return key
    if message.get("text"):
        return "text"
    return "unknown"


def forward_source(message: Dict[str, Any]) -> Optional[str]:
    origin = message.get("forward_from_chat")
    if not isinstance(origin, dict):
        # Bot API 7.0 moved forwards into forward_origin
        fwd = message.get("forward_origin")
        origin = fwd.get("chat") if isinstance(fwd, dict) else None
    if not isinstance(origin, dict):
        return None
    return as_str(origin.get("username")) or as_str(origin.get("title"))


def is_forward(message: Dict[str, Any]) -> bool:
    return bool(message.get("forward_from_chat") or message.get("forward_origin"))


def _error_message(code: Optional[int], description: Optional[str]) -> str:
    if code == 401:
        return "Invalid bot token. Please check TELEGRAM_BOT_TOKEN environment variable."
    if code == 403:
        return (
            "Bot is forbidden from accessing the channel. "
            "The bot must be added as an admin to receive channel posts."
        )
    if code == 400 and description and "chat not found" in description.lower():
        return "Channel not found. Ensure the channel exists and the bot has been added as an admin."
    return description or "Unknown Telegram API error"


class TelegramConnector(BaseConnector):
    source_type = "telegram"

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        sleep: Optional[SleepFn] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(http=http, sleep=sleep)
        self.env = env if env is not None else os.environ

    async def _call(self, token: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.http.get(f"{API_BASE}/bot{token}/{method}", params=params)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return {"ok": False, "error_code": resp.status, "description": resp.text[:500]}
        return payload

    async def get_updates(self, token: str, offset: Optional[int], limit: int) -> Dict[str, Any]:
        """Call getUpdates, sleeping out short 429s; the last throttled payload is returned as-is."""
        params: Dict[str, Any] = {
            "allowed_updates": json.dumps(ALLOWED_UPDATES),
            "limit": max(1, min(MAX_LIMIT, limit)),
        }
        if offset is not None:
            params["offset"] = offset

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TelegramThrottled),
            stop=stop_after_attempt(MAX_THROTTLE_RETRIES + 1),
            wait=_wait_retry_after,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    payload = await self._call(token, "getUpdates", params)
                    retry_after = as_number((payload.get("parameters") or {}).get("retry_after"))
                    if not payload.get("ok") and payload.get("error_code") == 429 and retry_after:
                        logger.warning("Telegram getUpdates throttled; retry after %ss", retry_after)
                        raise TelegramThrottled(payload, retry_after)
        except TelegramThrottled as e:
            return e.payload
        return payload

    async def fetch(self, params: FetchParams) -> FetchResult:
        token = as_str(self.env.get("TELEGRAM_BOT_TOKEN"))
        if not token:
            return FetchResult(
                next_cursor=dict(params.cursor),
                meta={
                    "error": "TELEGRAM_BOT_TOKEN environment variable is not set",
                    "errorCode": "missing_token",
                },
            )
        config = TelegramSourceConfig.from_dict(params.config)
        if not config.channels:
            return FetchResult(
                next_cursor=dict(params.cursor),
                meta={"error": "No channels configured", "errorCode": "no_channels"},
            )

        stored = [
            as_number(params.cursor.get(f"last_update_id_{channel}")) for channel in config.channels
        ]
        stored = [value for value in stored if value is not None]
        offset = int(min(stored)) + 1 if stored else None

        response = await self.get_updates(
            token, offset, config.max_messages_per_channel * len(config.channels)
        )
        if not response.get("ok"):
            code = response.get("error_code")
            code = int(code) if isinstance(code, (int, float)) and not isinstance(code, bool) else None
            message = _error_message(code, as_str(response.get("description")))
            logger.warning("Telegram source %s failed: %s", params.source_id, message)
            return FetchResult(
                next_cursor=dict(params.cursor),
                meta={"error": message, "errorCode": f"telegram_{code if code is not None else 'unknown'}"},
            )

        updates = [u for u in response.get("result") or [] if isinstance(u, dict)]
        window_start = to_iso(params.window_start)
        window_end = to_iso(params.window_end)
        wanted = set(config.channels)
        counts: Dict[str, int] = {}
        raw_items: List[Dict[str, Any]] = []
        next_cursor: Dict[str, Any] = dict(params.cursor)

        for update in updates:
            message = update.get("channel_post") or update.get("edited_channel_post")
            if not isinstance(message, dict):
                continue
            chat = message.get("chat") if isinstance(message.get("chat"), dict) else {}
            username = (as_str(chat.get("username")) or "").lower()
            if username not in wanted:
                continue
            if counts.get(username, 0) >= config.max_messages_per_channel:
                continue
            if not config.include_forwards and is_forward(message):
                continue
            content = as_str(message.get("text"))
            if content is None and config.include_media_captions:
                content = as_str(message.get("caption"))
            if not content and not has_media(message):
                continue
            posted = from_unix(message.get("date"))
            if posted is None or posted < params.window_start or posted > params.window_end:
                continue

            update_id = int(update.get("update_id") or 0)
            raw_items.append({
                "kind": "telegram_message_v1",
                "channel_id": chat.get("id"),
                "channel_username": as_str(chat.get("username")) or username,
                "channel_title": as_str(chat.get("title")),
                "message_id": message.get("message_id"),
                "date": message.get("date"),
                "text": as_str(message.get("text")),
                "caption": as_str(message.get("caption")),
                "message_type": message_type(message),
                "has_media": has_media(message),
                "forward_from": forward_source(message),
                "views": as_number(message.get("views")),
                "update_id": update_id,
                "window_start": window_start,
                "window_end": window_end,
            })
            counts[username] = counts.get(username, 0) + 1
            key = f"last_update_id_{username}"
            next_cursor[key] = max(int(as_number(next_cursor.get(key)) or 0), update_id)

        update_ids = [u["update_id"] for u in updates if isinstance(u.get("update_id"), int)]
        if update_ids:
            previous = int(as_number(next_cursor.get("last_update_id")) or 0)
            next_cursor["last_update_id"] = max(previous, max(update_ids))

        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor,
            meta={
                "updatesReceived": len(updates),
                "itemsExtracted": len(raw_items),
                "channelMessageCounts": counts,
            },
        )

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        rec = raw if isinstance(raw, dict) else {}
        channel_id = rec.get("channel_id")
        channel_id = channel_id if isinstance(channel_id, int) and not isinstance(channel_id, bool) else None
        username = as_str(rec.get("channel_username")) or "unknown"
        channel_title = as_str(rec.get("channel_title"))
        message_id = rec.get("message_id") if isinstance(rec.get("message_id"), int) else 0
        kind = as_str(rec.get("message_type")) or "unknown"

        body = as_str(rec.get("text"))
        if body is None and as_bool(pick(params.config, "include_media_captions", "includeMediaCaptions"), True):
            body = as_str(rec.get("caption"))

        return ContentItemDraft(
            title=None,
            body_text=clamp_text(body, MAX_BODY_CHARS),
            canonical_url=f"https://t.me/{username}/{message_id}",
            source_type=self.source_type,
            external_id=f"{channel_id}_{message_id}" if channel_id is not None else None,
            published_at=to_iso(from_unix(rec.get("date"))),
            author=channel_title or f"@{username}",
            metadata={
                "channel_id": channel_id,
                "channel_username": username,
                "channel_title": channel_title,
                "message_type": kind,
                "has_media": bool(rec.get("has_media")),
                "forward_from": as_str(rec.get("forward_from")),
                "views": as_number(rec.get("views")),
                "window_start": to_iso(params.window_start),
                "window_end": to_iso(params.window_end),
            },
            raw={
                "kind": "telegram_message_v1",
                "channel_id": channel_id,
                "channel_username": username,
                "message_id": message_id,
                "date": rec.get("date"),
                "message_type": kind,
            },
        )
