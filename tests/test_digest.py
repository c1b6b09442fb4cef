"""Tests for the daily brief: heuristic fallback, summarizer, cache states and client."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import openai
import pytest
import requests

from dossier.digest.cache import DigestCache, DigestState, classify_entry, entry_to_wire
from dossier.digest.client import DigestClient, DigestRateLimited, DigestUnavailable
from dossier.digest.heuristic import (
    FALLBACK_RISKS,
    NO_CREDENTIALS_SUMMARY,
    QUOTA_SUMMARY,
    heuristic_brief,
)
from dossier.digest.models import (
    REASON_AI_ERROR,
    REASON_NO_API_KEY,
    REASON_QUOTA_EXCEEDED,
    Brief,
    Digest,
)
from dossier.digest.summarizer import Summarizer, SummarizerError, build_digest_input
from dossier.ingest.fetch_rss import Article

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def _article(source, title, published_at="2024-01-02T10:00:00+00:00"):
    return Article(source=source, title=title, link=f"https://news.test/{abs(hash(title))}", published_at=published_at)


@pytest.fixture
def articles():
    return [
        _article("WSJ Markets", "Stocks slide as inflation data surprises"),
        _article("BBC World", "Military drills near the border"),
        _article("ABC Money", "Central bank holds rates"),
        _article("NY Post World", "Celebrity wedding draws crowds"),
        _article("BBC Business", "Oil output cut extended"),
        _article("Reuters World", "Sanctions widened on shipping firms"),
    ]


def _completion(payload):
    message = MagicMock()
    message.content = json.dumps(payload)
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


# ---- Heuristic ----

class TestHeuristicBrief:
    def test_keyword_classification(self, articles):
        brief = heuristic_brief(articles, REASON_AI_ERROR)
        assert brief.macro == (
            "WSJ Markets: Stocks slide as inflation data surprises",
            "ABC Money: Central bank holds rates",
            "BBC Business: Oil output cut extended",
        )
        assert brief.geo == (
            "BBC World: Military drills near the border",
            "Reuters World: Sanctions widened on shipping firms",
        )
        assert brief.confidence == "low"
        assert brief.reason == REASON_AI_ERROR
        assert brief.risks == FALLBACK_RISKS
        assert len(brief.watchlist) == 4

    def test_backfill_when_no_keyword_matches(self):
        plain = [_article("S", f"Headline {i}") for i in range(10)]
        brief = heuristic_brief(plain, REASON_AI_ERROR)
        assert brief.macro == tuple(f"S: Headline {i}" for i in range(4))
        assert brief.geo == tuple(f"S: Headline {i}" for i in range(4, 8))

    def test_caps_bullets(self):
        many = [_article("S", f"Oil market update {i}") for i in range(20)]
        assert len(heuristic_brief(many, REASON_AI_ERROR).macro) == 5

    def test_reason_specific_summaries(self, articles):
        assert heuristic_brief(articles, REASON_NO_API_KEY).summary == NO_CREDENTIALS_SUMMARY
        assert heuristic_brief(articles, REASON_QUOTA_EXCEEDED).summary == QUOTA_SUMMARY

    def test_no_articles(self):
        brief = heuristic_brief([], REASON_AI_ERROR)
        assert brief.macro == ()
        assert brief.watchlist == ()


# ---- Summarizer ----

class TestSummarizer:
    def test_summarize_parses_model_json(self, articles):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion({
            "summary": "Risk-off tone.",
            "macro": ["Inflation surprise"],
            "geo": ["Border drills"],
            "risks": ["Escalation"],
            "watchlist": ["CPI revision"],
            "confidence": "medium",
        })
        brief = Summarizer(model="gpt-4o-mini", client=client).summarize(articles)

        assert brief.summary == "Risk-off tone."
        assert brief.confidence == "medium"
        assert brief.reason is None
        kwargs = client.chat.completions.create.call_args[1]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"]["type"] == "json_schema"
        assert "[WSJ Markets]" in kwargs["messages"][1]["content"]

    def test_quota_error_is_flagged(self, articles):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.OpenAIError("Error code: 429 - insufficient_quota")
        with pytest.raises(SummarizerError) as exc_info:
            Summarizer(client=client).summarize(articles)
        assert exc_info.value.quota_exceeded is True

    def test_other_api_error(self, articles):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.OpenAIError("model overloaded")
        with pytest.raises(SummarizerError) as exc_info:
            Summarizer(client=client).summarize(articles)
        assert exc_info.value.quota_exceeded is False

    def test_invalid_json(self, articles):
        client = MagicMock()
        response = _completion({})
        response.choices[0].message.content = "not json"
        client.chat.completions.create.return_value = response
        with pytest.raises(SummarizerError, match="invalid JSON"):
            Summarizer(client=client).summarize(articles)

    def test_summarize_text(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion({
            "summary": "Short.",
            "key_points": ["a", "b"],
            "risks": [],
            "confidence": "high",
        })
        data = Summarizer(client=client).summarize_text("some long text", scope="energy")
        assert data == {"summary": "Short.", "key_points": ["a", "b"], "risks": [], "confidence": "high"}
        assert "Scope: energy" in client.chat.completions.create.call_args[1]["messages"][0]["content"]

    def test_credentials_from_environment(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert Summarizer().has_credentials is False
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert Summarizer().has_credentials is True

    def test_digest_input_is_limited(self):
        many = [_article("S", f"Title {i}", None) for i in range(50)]
        rows = build_digest_input(many).splitlines()
        assert len(rows) == 40
        assert rows[0] == "1. [S] Title 0 (unknown_time)"


# ---- Cache state machine ----

def _entry(valid_until, reason=None):
    return {
        "generatedAt": (valid_until - timedelta(hours=24)).isoformat(),
        "validUntil": valid_until.isoformat(),
        "brief": Brief(summary="s", reason=reason).to_dict(),
    }


class TestClassifyEntry:
    def test_fresh(self):
        assert classify_entry(_entry(NOW + timedelta(hours=1)), NOW, has_credentials=True) == DigestState.FRESH

    def test_expired(self):
        assert classify_entry(_entry(NOW), NOW, has_credentials=True) == DigestState.EXPIRED
        assert classify_entry(None, NOW) == DigestState.EXPIRED
        assert classify_entry({"validUntil": "garbage"}, NOW) == DigestState.EXPIRED

    def test_force(self):
        assert classify_entry(_entry(NOW + timedelta(hours=1)), NOW, force=True) == DigestState.FORCE_REQUESTED

    def test_no_credentials_entry_retried_once_key_exists(self):
        entry = _entry(NOW + timedelta(hours=20), reason=REASON_NO_API_KEY)
        assert classify_entry(entry, NOW, has_credentials=True) == DigestState.NO_CREDENTIALS
        assert classify_entry(entry, NOW, has_credentials=False) == DigestState.FRESH


class FakeSummarizer:
    def __init__(self, has_credentials=True, error=None):
        self.has_credentials = has_credentials
        self.error = error
        self.calls = 0

    def summarize(self, articles):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Brief(summary="Model brief.", macro=("m",), confidence="high")


class TestDigestCache:
    def _cache(self, tmp_path, summarizer, articles, clock=lambda: NOW):
        status = [{"source": "WSJ Markets", "ok": True, "count": len(articles)}]
        return DigestCache(
            str(tmp_path / "cache" / "news_daily_brief.json"),
            summarizer,
            article_source=lambda: (articles, status),
            clock=clock,
        )

    def test_generates_then_serves_from_cache(self, tmp_path, articles):
        summarizer = FakeSummarizer()
        cache = self._cache(tmp_path, summarizer, articles)

        first = cache.get_or_create()
        assert first["cacheHit"] is False
        assert first["summary"] == "Model brief."
        assert first["articleCount"] == len(articles)
        assert first["validUntil"] == (NOW + timedelta(hours=24)).isoformat()
        assert first["topHeadlines"][0] == "WSJ Markets: Stocks slide as inflation data surprises"
        assert first["feedStatus"][0]["ok"] is True

        second = cache.get_or_create()
        assert second["cacheHit"] is True
        assert summarizer.calls == 1

    def test_expired_entry_is_regenerated(self, tmp_path, articles):
        now = [NOW]
        summarizer = FakeSummarizer()
        cache = self._cache(tmp_path, summarizer, articles, clock=lambda: now[0])
        cache.get_or_create()

        now[0] = NOW + timedelta(hours=24)
        assert cache.get_or_create()["cacheHit"] is False
        assert summarizer.calls == 2

    def test_force_regenerates(self, tmp_path, articles):
        summarizer = FakeSummarizer()
        cache = self._cache(tmp_path, summarizer, articles)
        cache.get_or_create()
        assert cache.get_or_create(force=True)["cacheHit"] is False
        assert summarizer.calls == 2

    def test_quota_failure_persists_heuristic(self, tmp_path, articles):
        summarizer = FakeSummarizer(error=SummarizerError("429", quota_exceeded=True))
        cache = self._cache(tmp_path, summarizer, articles)

        data = cache.get_or_create()
        assert data["reason"] == REASON_QUOTA_EXCEEDED
        assert data["confidence"] == "low"

        summarizer.error = None
        assert cache.get_or_create()["cacheHit"] is True

    def test_no_credentials_bypasses_cache_once_key_appears(self, tmp_path, articles):
        summarizer = FakeSummarizer(has_credentials=False)
        cache = self._cache(tmp_path, summarizer, articles)

        data = cache.get_or_create()
        assert data["reason"] == REASON_NO_API_KEY
        assert data["summary"] == NO_CREDENTIALS_SUMMARY
        assert cache.get_or_create()["cacheHit"] is True
        assert summarizer.calls == 0

        summarizer.has_credentials = True
        data = cache.get_or_create()
        assert data["cacheHit"] is False
        assert data["summary"] == "Model brief."

    def test_unreadable_cache_file_is_regenerated(self, tmp_path, articles):
        cache = self._cache(tmp_path, FakeSummarizer(), articles)
        cache.cache_path.parent.mkdir(parents=True)
        cache.cache_path.write_text("{broken")
        assert cache.get_or_create()["cacheHit"] is False

    def test_entry_to_wire_round_trips_into_digest(self, tmp_path, articles):
        cache = self._cache(tmp_path, FakeSummarizer(), articles)
        digest = Digest.from_wire(entry_to_wire(cache.regenerate(), cache_hit=False))
        assert digest.brief.summary == "Model brief."
        assert digest.article_count == len(articles)


# ---- Client ----

class TestDigestClient:
    def _response(self, status=200, body=None):
        resp = MagicMock()
        resp.status_code = status
        resp.ok = 200 <= status < 300
        resp.json.return_value = body
        return resp

    def test_success(self):
        body = {"ok": True, "data": {"summary": "Brief.", "macro": ["a"], "geo": [], "articleCount": 12,
                                     "cacheHit": True, "generatedAt": "2024-01-02T00:00:00+00:00"}}
        with patch("dossier.digest.client.requests.get", return_value=self._response(body=body)) as mock_get:
            digest = DigestClient("http://localhost:8787/").get_digest(force=True)

        assert digest.brief.summary == "Brief."
        assert digest.article_count == 12
        assert digest.cache_hit is True
        assert mock_get.call_args[0][0] == "http://localhost:8787/digest"
        assert mock_get.call_args[1]["params"] == {"force": "1"}

    def test_rate_limited(self):
        with patch("dossier.digest.client.requests.get", return_value=self._response(status=429)):
            with pytest.raises(DigestRateLimited):
                DigestClient().get_digest()

    def test_server_error(self):
        with patch("dossier.digest.client.requests.get", return_value=self._response(status=500)):
            with pytest.raises(DigestUnavailable):
                DigestClient().get_digest()

    def test_network_failure(self):
        with patch("dossier.digest.client.requests.get", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(DigestUnavailable):
                DigestClient().get_digest()

    def test_not_ok_body(self):
        with patch("dossier.digest.client.requests.get", return_value=self._response(body={"ok": False})):
            with pytest.raises(DigestUnavailable):
                DigestClient().get_digest()

    def test_quota_reason_is_exposed(self):
        body = {"ok": True, "data": {"summary": "Headlines.", "reason": REASON_QUOTA_EXCEEDED}}
        with patch("dossier.digest.client.requests.get", return_value=self._response(body=body)):
            assert DigestClient().get_digest().rate_limited is True
