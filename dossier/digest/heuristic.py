"""Headline-only fallback brief."""

import re
from typing import List, Sequence

from ..ingest.fetch_rss import Article
from .models import REASON_NO_API_KEY, REASON_QUOTA_EXCEEDED, Brief

TOP_HEADLINES = 18
BULLETS_PER_SECTION = 5
WATCHLIST_SIZE = 4

MACRO_KEYWORDS = re.compile(r"(market|inflation|oil|econom|trade|rates|bank|fiscal|gdp|tariff|stocks)", re.IGNORECASE)
GEO_KEYWORDS = re.compile(
    r"(war|military|sanction|diplom|election|border|security|geopolit|iran|china|russia|ukraine)",
    re.IGNORECASE,
)

NO_CREDENTIALS_SUMMARY = (
    "OPENAI_API_KEY is not configured. AI summary unavailable; showing an automatic headline summary."
)
QUOTA_SUMMARY = "AI summary unavailable: API quota exceeded. Showing an automatic headline summary."
UNAVAILABLE_SUMMARY = "AI summary temporarily unavailable. Showing an automatic headline summary."

FALLBACK_RISKS = (
    "Regenerate the brief with the model once API quota is available.",
    "Manually verify the highest-impact headlines before acting on them.",
)


def _headlines(articles: Sequence[Article]) -> List[str]:
    return [a.headline for a in articles]


def heuristic_brief(articles: Sequence[Article], reason: str) -> Brief:
    """
    Build a low-confidence brief from headlines alone.

    The newest TOP_HEADLINES articles are classified by keyword. A section
    with no keyword match is backfilled from the top headlines (macro from
    the first four, geo from the next four).
    """
    top = list(articles[:TOP_HEADLINES])
    macro = [a for a in top if MACRO_KEYWORDS.search(a.title)][:BULLETS_PER_SECTION]
    geo = [a for a in top if GEO_KEYWORDS.search(a.title)][:BULLETS_PER_SECTION]

    if reason == REASON_NO_API_KEY:
        summary = NO_CREDENTIALS_SUMMARY
    elif reason == REASON_QUOTA_EXCEEDED:
        summary = QUOTA_SUMMARY
    else:
        summary = UNAVAILABLE_SUMMARY

    return Brief(
        summary=summary,
        macro=tuple(_headlines(macro or top[0:4])),
        geo=tuple(_headlines(geo or top[4:8])),
        risks=FALLBACK_RISKS,
        watchlist=tuple(_headlines(top[:WATCHLIST_SIZE])),
        confidence="low",
        reason=reason,
    )
