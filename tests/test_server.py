"""Tests for the digest HTTP server."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dossier.api.server import create_app
from dossier.config.settings import DEFAULT_SETTINGS
from dossier.digest.summarizer import SummarizerError

WIRE = {
    "summary": "Markets steady.",
    "macro": ["WSJ Markets: Stocks edge higher"],
    "geo": [],
    "risks": [],
    "watchlist": [],
    "confidence": "medium",
    "reason": None,
    "generatedAt": "2024-01-02T00:00:00+00:00",
    "validUntil": "2024-01-03T00:00:00+00:00",
    "articleCount": 40,
    "cacheHit": True,
    "topHeadlines": [],
    "feedStatus": [],
}


@pytest.fixture
def summarizer():
    fake = MagicMock()
    fake.model = "gpt-4o-mini"
    fake.has_credentials = True
    return fake


@pytest.fixture
def digest_cache():
    fake = MagicMock()
    fake.get_or_create.return_value = WIRE
    return fake


@pytest.fixture
def client(summarizer, digest_cache):
    app = create_app(settings=DEFAULT_SETTINGS, summarizer=summarizer, digest_cache=digest_cache)
    return TestClient(app)


class TestHealth:
    def test_reports_model_and_key(self, client, summarizer):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "model": "gpt-4o-mini", "hasOpenAIKey": True}

        summarizer.has_credentials = False
        assert client.get("/health").json()["hasOpenAIKey"] is False


class TestDigestEndpoints:
    def test_digest(self, client, digest_cache):
        resp = client.get("/digest")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "data": WIRE}
        digest_cache.get_or_create.assert_called_once_with(force=False)

    def test_force(self, client, digest_cache):
        client.get("/digest", params={"force": "1"})
        digest_cache.get_or_create.assert_called_once_with(force=True)

    def test_daily_brief_alias(self, client, digest_cache):
        resp = client.get("/api/news/daily-brief?force=1")
        assert resp.json()["data"]["summary"] == "Markets steady."
        digest_cache.get_or_create.assert_called_once_with(force=True)

    def test_failure_returns_500(self, client, digest_cache):
        digest_cache.get_or_create.side_effect = OSError("read-only file system")
        resp = client.get("/digest")
        assert resp.status_code == 500
        assert resp.json() == {"error": "digest_failed", "detail": "read-only file system"}


class TestSources:
    def test_lists_news_feeds(self, client):
        resp = client.get("/api/osint/sources")
        assert resp.status_code == 200
        sources = resp.json()["sources"]
        assert len(sources) == 12
        assert sources[0] == {
            "id": "bbc-world",
            "label": "BBC World",
            "type": "news",
            "url": "https://feeds.bbci.co.uk/news/world/rss.xml",
        }


class TestTextBrief:
    def test_success(self, client, summarizer):
        summarizer.summarize_text.return_value = {
            "summary": "Short.",
            "key_points": ["a"],
            "risks": ["b"],
            "confidence": "low",
        }
        resp = client.post("/api/brief", json={"text": "  long report  ", "scope": "energy"})
        assert resp.status_code == 200
        assert resp.json()["data"]["key_points"] == ["a"]
        summarizer.summarize_text.assert_called_once_with("long report", scope="energy")

    def test_empty_text(self, client):
        assert client.post("/api/brief", json={"text": "   "}).status_code == 400

    def test_missing_credentials(self, client, summarizer):
        summarizer.has_credentials = False
        assert client.post("/api/brief", json={"text": "report"}).status_code == 503

    def test_quota_error(self, client, summarizer):
        summarizer.summarize_text.side_effect = SummarizerError("429", quota_exceeded=True)
        assert client.post("/api/brief", json={"text": "report"}).status_code == 429
