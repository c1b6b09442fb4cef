"""
Server-side daily brief cache.

One JSON entry on disk:
    {"generatedAt", "validUntil", "feedStatus", "articleCount",
     "topHeadlines", "brief": {...}}

Entry states for a request:
    FRESH            now < validUntil; served as a cache hit
    NO_CREDENTIALS   entry was written without an API key and a key now exists;
                     regenerated regardless of validUntil
    EXPIRED          now >= validUntil, or no readable entry
    FORCE_REQUESTED  caller asked for regeneration

Every regeneration fetches articles and tries the summarizer. On summarizer
failure (or without credentials) a heuristic brief is built instead; either
way the new entry is persisted with a fresh TTL.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config.secrets import MissingAPIKeyError
from ..ingest.fetch_rss import Article, collect_articles
from .heuristic import heuristic_brief
from .models import REASON_AI_ERROR, REASON_NO_API_KEY, REASON_QUOTA_EXCEEDED, Brief
from .summarizer import Summarizer, SummarizerError

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24
TOP_HEADLINES = 12


class DigestState(str, Enum):
    FRESH = "fresh"
    NO_CREDENTIALS = "no_credentials"
    EXPIRED = "expired"
    FORCE_REQUESTED = "force_requested"


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_entry(
    entry: Optional[Dict[str, Any]],
    now: datetime,
    force: bool = False,
    has_credentials: bool = False,
) -> DigestState:
    """Decide how a request is served from the cached entry."""
    if force:
        return DigestState.FORCE_REQUESTED
    if not isinstance(entry, dict):
        return DigestState.EXPIRED

    brief = entry.get("brief") or {}
    if brief.get("reason") == REASON_NO_API_KEY and has_credentials:
        return DigestState.NO_CREDENTIALS

    valid_until = _parse_time(entry.get("validUntil"))
    if valid_until is None or now >= valid_until:
        return DigestState.EXPIRED
    return DigestState.FRESH


def entry_to_wire(entry: Dict[str, Any], cache_hit: bool) -> Dict[str, Any]:
    """Flatten a cache entry into the ``data`` object served to clients."""
    brief = Brief.from_dict(entry.get("brief") or {})
    return {
        **brief.to_dict(),
        "generatedAt": entry.get("generatedAt"),
        "validUntil": entry.get("validUntil"),
        "articleCount": entry.get("articleCount", 0),
        "cacheHit": cache_hit,
        "topHeadlines": list(entry.get("topHeadlines") or []),
        "feedStatus": list(entry.get("feedStatus") or []),
    }


class DigestCache:
    def __init__(
        self,
        cache_path: str,
        summarizer: Summarizer,
        article_source: Callable[[], Tuple[List[Article], List[Dict[str, Any]]]] = collect_articles,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cache_path = Path(cache_path)
        self.summarizer = summarizer
        self.article_source = article_source
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock

    def read_entry(self) -> Optional[Dict[str, Any]]:
        """The cached entry, or None when missing or unreadable."""
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable digest cache {self.cache_path}: {e}")
            return None

    def write_entry(self, entry: Dict[str, Any]) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.cache_path, "w", encoding="utf-8") as f:
            json.dump(entry, f, indent=2)

    def get_or_create(self, force: bool = False) -> Dict[str, Any]:
        """
        Serve the cached brief or regenerate it.

        Returns:
            Wire ``data`` dict (see entry_to_wire)

        Raises:
            OSError: If a regenerated entry cannot be written
        """
        entry = self.read_entry()
        state = classify_entry(entry, self.clock(), force, self.summarizer.has_credentials)
        if state == DigestState.FRESH:
            return entry_to_wire(entry, cache_hit=True)

        logger.info(f"Regenerating daily brief ({state.value})")
        entry = self.regenerate()
        self.write_entry(entry)
        return entry_to_wire(entry, cache_hit=False)

    def regenerate(self) -> Dict[str, Any]:
        articles, feed_status = self.article_source()
        brief = self._write_brief(articles)
        now = self.clock()
        return {
            "generatedAt": now.isoformat(),
            "validUntil": (now + self.ttl).isoformat(),
            "feedStatus": feed_status,
            "articleCount": len(articles),
            "topHeadlines": [a.headline for a in articles[:TOP_HEADLINES]],
            "brief": brief.to_dict(),
        }

    def _write_brief(self, articles: List[Article]) -> Brief:
        if not self.summarizer.has_credentials:
            return heuristic_brief(articles, REASON_NO_API_KEY)
        try:
            return self.summarizer.summarize(articles)
        except MissingAPIKeyError:
            return heuristic_brief(articles, REASON_NO_API_KEY)
        except SummarizerError as e:
            reason = REASON_QUOTA_EXCEEDED if e.quota_exceeded else REASON_AI_ERROR
            logger.warning(f"Summarizer failed ({reason}), using headline brief: {e.message}")
            return heuristic_brief(articles, reason)
