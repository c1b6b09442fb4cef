"""Tests for news feed collection."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from dossier.ingest.base_fetcher import FetchError
from dossier.ingest.fetch_rss import (
    NEWS_FEEDS,
    NEWS_USER_AGENT,
    Article,
    NewsFeed,
    collect_articles,
    fetch_feed,
    parse_feed,
)

SAMPLE_RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>World</title>
    <link>https://news.example.test/</link>
    <description>World news</description>
    <item>
      <title>Oil prices climb as talks stall</title>
      <link>https://news.example.test/oil</link>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Election results delayed</title>
      <link>https://news.example.test/election</link>
    </item>
    <item>
      <title>No link here</title>
    </item>
  </channel>
</rss>
"""


class TestParseFeed:
    def test_normalizes_entries(self):
        articles = parse_feed("BBC World", SAMPLE_RSS)
        assert [a.title for a in articles] == ["Oil prices climb as talks stall", "Election results delayed"]
        assert articles[0].source == "BBC World"
        assert articles[0].link == "https://news.example.test/oil"
        assert articles[0].published_at == "2024-01-01T10:00:00+00:00"
        assert articles[1].published_at is None

    def test_headline_format(self):
        article = Article(source="WSJ Markets", title="Stocks rally", link="https://x.test")
        assert article.headline == "WSJ Markets: Stocks rally"
        assert article.to_dict()["publishedAt"] is None


class TestFetchFeed:
    def test_uses_news_user_agent(self):
        feed = NewsFeed("BBC World", "https://news.example.test/rss.xml")
        with patch("dossier.ingest.fetch_rss.requests.get") as mock_get:
            mock_resp = MagicMock()
            mock_resp.content = SAMPLE_RSS
            mock_resp.raise_for_status.return_value = None
            mock_get.return_value = mock_resp

            articles = fetch_feed(feed, timeout=12)

        assert len(articles) == 2
        assert mock_get.call_args[1]["headers"]["User-Agent"] == NEWS_USER_AGENT
        assert mock_get.call_args[1]["timeout"] == 12

    def test_transport_failure_is_fetch_error(self):
        feed = NewsFeed("Reuters World", "https://news.example.test/reuters")
        with patch("dossier.ingest.fetch_rss.requests.get", side_effect=requests.exceptions.ConnectionError("dns")):
            with pytest.raises(FetchError) as exc_info:
                fetch_feed(feed)
        assert exc_info.value.source_id == "Reuters World"


class TestCollectArticles:
    def test_sorted_newest_first_and_capped(self):
        feeds = (NewsFeed("A", "https://a.test"), NewsFeed("B", "https://b.test"), NewsFeed("C", "https://c.test"))

        def fake_fetch(feed, timeout):
            if feed.source == "C":
                raise FetchError("C", "HTTP 403")
            if feed.source == "A":
                return [
                    Article("A", "old", "https://a.test/1", "2024-01-01T00:00:00+00:00"),
                    Article("A", "undated", "https://a.test/2", None),
                ]
            return [Article("B", "new", "https://b.test/1", "2024-01-02T00:00:00+00:00")]

        with patch("dossier.ingest.fetch_rss.fetch_feed", side_effect=fake_fetch):
            articles, status = collect_articles(feeds, max_articles=2)

        assert [a.title for a in articles] == ["new", "old"]
        assert status == [
            {"source": "A", "ok": True, "count": 2},
            {"source": "B", "ok": True, "count": 1},
            {"source": "C", "ok": False, "error": "HTTP 403"},
        ]

    def test_news_feed_catalog(self):
        assert len(NEWS_FEEDS) == 12
        assert len({f.source for f in NEWS_FEEDS}) == 12
