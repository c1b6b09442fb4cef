"""Digest data shapes shared by the server cache, the client and snapshots."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

CONFIDENCE_LEVELS = ("low", "medium", "high")

# Fallback reasons
REASON_NO_API_KEY = "no_api_key"
REASON_QUOTA_EXCEEDED = "quota_exceeded"
REASON_AI_ERROR = "ai_error"


def _strings(values: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if not values or isinstance(values, (str, bytes)):
        return ()
    return tuple(str(v) for v in values if v is not None and str(v).strip())


@dataclass(frozen=True)
class Brief:
    """A daily news brief, written by the summarizer or the heuristic fallback."""
    summary: str
    macro: Tuple[str, ...] = ()
    geo: Tuple[str, ...] = ()
    risks: Tuple[str, ...] = ()
    watchlist: Tuple[str, ...] = ()
    confidence: str = "low"
    reason: Optional[str] = None  # set only on heuristic briefs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "macro": list(self.macro),
            "geo": list(self.geo),
            "risks": list(self.risks),
            "watchlist": list(self.watchlist),
            "confidence": self.confidence,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Brief":
        confidence = data.get("confidence")
        return cls(
            summary=str(data.get("summary") or ""),
            macro=_strings(data.get("macro")),
            geo=_strings(data.get("geo")),
            risks=_strings(data.get("risks")),
            watchlist=_strings(data.get("watchlist")),
            confidence=confidence if confidence in CONFIDENCE_LEVELS else "low",
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class Digest:
    """What the core displays: a brief plus its cache metadata."""
    brief: Brief
    generated_at: Optional[str] = None
    valid_until: Optional[str] = None
    article_count: int = 0
    cache_hit: bool = False
    top_headlines: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def rate_limited(self) -> bool:
        return self.brief.reason == REASON_QUOTA_EXCEEDED

    def to_wire(self) -> Dict[str, Any]:
        """The ``data`` object of GET /digest."""
        return {
            **self.brief.to_dict(),
            "generatedAt": self.generated_at,
            "validUntil": self.valid_until,
            "articleCount": self.article_count,
            "cacheHit": self.cache_hit,
            "topHeadlines": list(self.top_headlines),
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Digest":
        try:
            article_count = int(data.get("articleCount") or 0)
        except (TypeError, ValueError):
            article_count = 0
        return cls(
            brief=Brief.from_dict(data),
            generated_at=data.get("generatedAt"),
            valid_until=data.get("validUntil"),
            article_count=article_count,
            cache_hit=bool(data.get("cacheHit")),
            top_headlines=_strings(data.get("topHeadlines")),
        )
