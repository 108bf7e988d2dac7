"""Podcast feeds: RSS entries plus enclosure and iTunes episode fields."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict

from radar.connectors.feeds import FeedSourceConfig
from radar.connectors.rss import RssConnector
from radar.connectors.values import as_str

PODCAST_FIELDS = (
    "enclosure_url",
    "enclosure_type",
    "enclosure_length",
    "duration",
    "episode_number",
    "season",
)


class PodcastConnector(RssConnector):
    source_type = "podcast"
    user_agent = "radar/0.1 (podcast connector)"

    def parse_config(self, config: Dict[str, Any]) -> FeedSourceConfig:
        # show notes live in content:encoded; always prefer it
        return replace(FeedSourceConfig.from_dict(config, kind="Podcast"), prefer_content_encoded=True)

    def build_raw(self, entry: Dict[str, Any], config: FeedSourceConfig) -> Dict[str, Any]:
        raw = super().build_raw(entry, config)
        for key in PODCAST_FIELDS:
            raw[key] = entry.get(key)
        return raw

    def read_raw(self, raw: Any) -> Dict[str, Any]:
        rec = super().read_raw(raw)
        source = raw if isinstance(raw, dict) else {}
        for key in PODCAST_FIELDS:
            rec[key] = as_str(source.get(key))
        return rec

    def metadata(self, rec: Dict[str, Any]) -> Dict[str, Any]:
        meta = super().metadata(rec)
        for key in ("enclosure_url", "duration", "episode_number", "season"):
            if rec[key]:
                meta[key] = rec[key]
        return meta

    def bounded_raw(self, rec: Dict[str, Any]) -> Dict[str, Any]:
        raw = super().bounded_raw(rec)
        for key in PODCAST_FIELDS:
            raw[key] = rec[key]
        return raw
