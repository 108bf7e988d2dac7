"""Tests for the RSS, podcast and Lobsters connectors and shared feed helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_params, text_response
from radar.connectors.errors import ConfigError, ProviderHTTPError
from radar.connectors.feeds import (
    MAX_RECENT_GUIDS,
    FeedCursor,
    FeedSourceConfig,
    feed_type,
    parse_duration,
    parse_feed,
    select_new_entries,
)
from radar.connectors.lobsters import LobstersConnector, LobstersSourceConfig, parse_comment_count
from radar.connectors.podcast import PodcastConnector
from radar.connectors.rss import RssConnector

FEED_URL = "https://example.com/feed.xml"

BLOG_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <item>
      <title>Second post</title>
      <link>https://example.com/second</link>
      <guid>post-2</guid>
      <author>ann@example.com (Ann)</author>
      <pubDate>Tue, 07 Jan 2025 09:00:00 GMT</pubDate>
      <category>ai</category>
      <description>Short summary</description>
      <content:encoded><![CDATA[<p>Full <b>body</b> of the second post</p>]]></content:encoded>
    </item>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <guid>post-1</guid>
      <pubDate>Mon, 06 Jan 2025 09:00:00 GMT</pubDate>
      <description>&lt;p&gt;Only a description&lt;/p&gt;</description>
    </item>
  </channel>
</rss>
"""

PODCAST_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Example Cast</title>
    <item>
      <title>Episode 12: Agents</title>
      <link>https://cast.example.com/12</link>
      <guid isPermaLink="false">ep-12</guid>
      <pubDate>Mon, 06 Jan 2025 12:00:00 GMT</pubDate>
      <description>Short blurb</description>
      <content:encoded><![CDATA[<p>Show notes</p><ul><li>Intro</li></ul>]]></content:encoded>
      <enclosure url="https://cdn.example.com/ep12.mp3" type="audio/mpeg" length="123456"/>
      <itunes:duration>01:02:03</itunes:duration>
      <itunes:episode>12</itunes:episode>
      <itunes:season>2</itunes:season>
    </item>
  </channel>
</rss>
"""

LOBSTERS_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Lobsters: ai</title>
    <item>
      <title>Writing a tokenizer</title>
      <link>https://blog.example.org/tokenizer</link>
      <guid isPermaLink="false">https://lobste.rs/s/abc123</guid>
      <author>alice@users.lobste.rs (alice)</author>
      <pubDate>Mon, 06 Jan 2025 08:00:00 GMT</pubDate>
      <comments>https://lobste.rs/s/abc123</comments>
      <category>ai</category>
      <category>compilers</category>
      <description>&lt;p&gt;&lt;a href="https://lobste.rs/s/abc123"&gt;12 comments&lt;/a&gt;&lt;/p&gt;</description>
    </item>
  </channel>
</rss>
"""


class TestFeedHelpers:
    def test_parse_duration(self):
        assert parse_duration("01:02:03") == "3723"
        assert parse_duration("4:05") == "245"
        assert parse_duration("900") == "900"
        assert parse_duration("about an hour") is None
        assert parse_duration(None) is None

    def test_feed_type(self):
        assert feed_type("atom10") == "atom"
        assert feed_type("rss20") == "rss"
        assert feed_type("rss10") == "rdf"
        assert feed_type("") == "unknown"

    def test_parse_feed_entries(self):
        kind, entries = parse_feed(BLOG_RSS)
        assert kind == "rss"
        assert [e["guid"] for e in entries] == ["post-2", "post-1"]
        assert entries[0]["published"] == datetime(2025, 1, 7, 9, 0, tzinfo=timezone.utc)
        assert entries[0]["categories"] == ["ai"]
        assert "<b>body</b>" in entries[0]["content_html"]

    def test_config_requires_feed_url(self):
        with pytest.raises(ConfigError):
            FeedSourceConfig.from_dict({})
        config = FeedSourceConfig.from_dict({"feedUrl": FEED_URL, "maxItemCount": 999})
        assert config.max_item_count == 200


class TestSelectNewEntries:
    def entries(self, count, start=0):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        return [
            {"guid": f"g{i}", "published": base + timedelta(minutes=i)}
            for i in range(start, start + count)
        ]

    def test_seen_guids_are_never_reemitted(self):
        cursor = FeedCursor(recent_guids=["g1", "g3"])
        selection = select_new_entries(self.entries(5), cursor, 50)
        assert [e["guid"] for e in selection.entries] == ["g0", "g2", "g4"]
        assert selection.cursor.recent_guids[:3] == ["g0", "g2", "g4"]

    def test_recent_guids_capped(self):
        cursor = FeedCursor(recent_guids=[f"old{i}" for i in range(150)])
        selection = select_new_entries(self.entries(120), cursor, 200)
        assert len(selection.entries) == 120
        assert len(selection.cursor.recent_guids) == MAX_RECENT_GUIDS
        assert selection.cursor.recent_guids[0] == "g0"
        assert selection.cursor.recent_guids[-1] == "old79"

    def test_guidless_entries_use_high_water_mark(self):
        cursor = FeedCursor(last_published_at="2025-01-01T00:05:00.000Z")
        entries = [
            {"guid": None, "published": datetime(2025, 1, 1, 0, 4, tzinfo=timezone.utc)},
            {"guid": None, "published": datetime(2025, 1, 1, 0, 6, tzinfo=timezone.utc)},
        ]
        selection = select_new_entries(entries, cursor, 10)
        assert len(selection.entries) == 1
        assert selection.cursor.last_published_at == "2025-01-01T00:06:00.000Z"

    def test_max_items(self):
        selection = select_new_entries(self.entries(10), FeedCursor(), 3)
        assert len(selection.entries) == 3


class TestRssConnector:
    @pytest.mark.asyncio
    async def test_fetch_and_normalize(self, http):
        http.add(FEED_URL, text_response(BLOG_RSS))
        connector = RssConnector(http=http)
        params = make_params("rss", {"feed_url": FEED_URL})

        result = await connector.fetch(params)
        assert result.meta["feed_type"] == "rss"
        assert result.meta["entries_found"] == 2
        assert result.next_cursor["recent_guids"] == ["post-2", "post-1"]
        assert result.next_cursor["last_published_at"] == "2025-01-07T09:00:00.000Z"

        first, second = [connector.normalize(r, params) for r in result.raw_items]
        assert first.title == "Second post"
        assert first.body_text == "Full body of the second post"
        assert first.canonical_url == "https://example.com/second"
        assert first.external_id == "post-2"
        assert first.published_at == "2025-01-07T09:00:00.000Z"
        assert first.metadata == {"feed_url": FEED_URL, "categories": ["ai"], "guid": "post-2"}
        assert second.body_text == "Only a description"

    @pytest.mark.asyncio
    async def test_second_run_emits_nothing(self, http):
        http.add(FEED_URL, text_response(BLOG_RSS))
        connector = RssConnector(http=http)
        first = await connector.fetch(make_params("rss", {"feedUrl": FEED_URL}))
        second = await connector.fetch(make_params("rss", {"feedUrl": FEED_URL}, cursor=first.next_cursor))
        assert second.raw_items == []
        assert second.next_cursor == first.next_cursor

    @pytest.mark.asyncio
    async def test_http_error_raises(self, http):
        http.add(FEED_URL, text_response("gone", status=410))
        with pytest.raises(ProviderHTTPError):
            await RssConnector(http=http).fetch(make_params("rss", {"feedUrl": FEED_URL}))

    def test_normalize_tolerates_junk(self):
        draft = RssConnector().normalize({"title": 5, "categories": "x"}, make_params("rss"))
        assert draft.title == "5"
        assert draft.body_text is None
        assert draft.metadata == {}


class TestPodcastConnector:
    @pytest.mark.asyncio
    async def test_episode_fields(self, http):
        http.add(FEED_URL, text_response(PODCAST_RSS))
        connector = PodcastConnector(http=http)
        params = make_params("podcast", {"feedUrl": FEED_URL, "preferContentEncoded": False})

        result = await connector.fetch(params)
        draft = connector.normalize(result.raw_items[0], params)

        assert draft.source_type == "podcast"
        assert draft.external_id == "ep-12"
        assert draft.body_text == "Show notes\nIntro"
        assert draft.metadata["enclosure_url"] == "https://cdn.example.com/ep12.mp3"
        assert draft.metadata["duration"] == "3723"
        assert draft.metadata["episode_number"] == "12"
        assert draft.metadata["season"] == "2"
        assert draft.raw["enclosure_type"] == "audio/mpeg"

    @pytest.mark.asyncio
    async def test_seen_episode_not_reemitted(self, http):
        http.add(FEED_URL, text_response(PODCAST_RSS))
        result = await PodcastConnector(http=http).fetch(
            make_params("podcast", {"feedUrl": FEED_URL}, cursor={"recent_guids": ["ep-12"]})
        )
        assert result.raw_items == []

    def test_missing_feed_url(self):
        with pytest.raises(ConfigError, match="Podcast"):
            PodcastConnector().parse_config({})


class TestLobstersConnector:
    def test_config_defaults(self):
        assert LobstersSourceConfig.from_dict({}).feed_url == "https://lobste.rs/rss"
        assert LobstersSourceConfig.from_dict({"tag": "rust"}).feed_url == "https://lobste.rs/t/rust.rss"

    def test_parse_comment_count(self):
        assert parse_comment_count("<a>1 comment</a>") == 1
        assert parse_comment_count("no count") is None

    @pytest.mark.asyncio
    async def test_story_metadata(self, http):
        http.add("lobste.rs/t/ai.rss", text_response(LOBSTERS_RSS))
        connector = LobstersConnector(http=http)
        params = make_params("lobsters", {"tag": "ai"})

        result = await connector.fetch(params)
        draft = connector.normalize(result.raw_items[0], params)

        assert http.urls() == ["https://lobste.rs/t/ai.rss"]
        assert draft.canonical_url == "https://blog.example.org/tokenizer"
        assert draft.body_text == "12 comments"
        assert draft.metadata["tags"] == ["ai", "compilers"]
        assert draft.metadata["domain"] == "blog.example.org"
        assert draft.metadata["comment_count"] == 12
