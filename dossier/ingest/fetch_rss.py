"""RSS/Atom news collection for the daily brief."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import feedparser
import requests
from bs4 import BeautifulSoup

from .base_fetcher import DEFAULT_TIMEOUT_SECONDS, FetchError

logger = logging.getLogger(__name__)

NEWS_USER_AGENT = "DossierNewsBot/1.0"
MAX_ARTICLES = 80


@dataclass(frozen=True)
class NewsFeed:
    source: str
    url: str


NEWS_FEEDS = (
    NewsFeed("BBC World", "https://feeds.bbci.co.uk/news/world/rss.xml"),
    NewsFeed("BBC Business", "https://feeds.bbci.co.uk/news/business/rss.xml"),
    NewsFeed("WSJ World", "https://feeds.a.dj.com/rss/RSSWorldNews.xml"),
    NewsFeed("WSJ Markets", "https://feeds.a.dj.com/rss/RSSMarketsMain.xml"),
    NewsFeed("ABC International", "https://abcnews.go.com/abcnews/internationalheadlines"),
    NewsFeed("ABC Money", "https://abcnews.go.com/abcnews/moneyheadlines"),
    NewsFeed("NY Post World", "https://nypost.com/world-news/feed/"),
    NewsFeed("NY Post Business", "https://nypost.com/business/feed/"),
    NewsFeed("The Economist International", "https://www.economist.com/international/rss.xml"),
    NewsFeed("The Economist Finance", "https://www.economist.com/finance-and-economics/rss.xml"),
    # Reuters is unreachable from some networks
    NewsFeed("Reuters Business", "https://feeds.reuters.com/reuters/businessNews"),
    NewsFeed("Reuters World", "https://feeds.reuters.com/Reuters/worldNews"),
)


@dataclass(frozen=True)
class Article:
    source: str
    title: str
    link: str
    published_at: Optional[str] = None  # ISO-8601 UTC

    @property
    def headline(self) -> str:
        return f"{self.source}: {self.title}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "title": self.title,
            "link": self.link,
            "publishedAt": self.published_at,
        }


def _clean(text: str) -> str:
    if not text:
        return ""
    return BeautifulSoup(text, "html.parser").get_text(separator=" ", strip=True)


def _entry_time(entry: Any) -> Optional[str]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()


def parse_feed(source: str, content: bytes) -> List[Article]:
    """
    Normalize a feed document into articles.

    Entries without a title or a link are dropped.

    Raises:
        FetchError: If the document cannot be parsed and yields no entries
    """
    feed = feedparser.parse(content)
    if feed.bozo and not feed.entries:
        raise FetchError(source, f"Feed parse error: {feed.get('bozo_exception')}")

    articles = []
    for entry in feed.entries:
        title = _clean(entry.get("title", ""))
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        articles.append(Article(source=source, title=title, link=link, published_at=_entry_time(entry)))
    return articles


def fetch_feed(feed: NewsFeed, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> List[Article]:
    """Download and parse one feed."""
    try:
        resp = requests.get(feed.url, headers={"User-Agent": NEWS_USER_AGENT}, timeout=timeout)
        resp.raise_for_status()
    except requests.exceptions.Timeout as e:
        raise FetchError(feed.source, f"Timeout after {timeout}s", e)
    except requests.exceptions.RequestException as e:
        raise FetchError(feed.source, f"Request failed: {e}", e)
    return parse_feed(feed.source, resp.content)


def _sort_key(article: Article) -> float:
    if not article.published_at:
        return 0.0
    return datetime.fromisoformat(article.published_at).timestamp()


def collect_articles(
    feeds: Sequence[NewsFeed] = NEWS_FEEDS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_articles: int = MAX_ARTICLES,
) -> Tuple[List[Article], List[Dict[str, Any]]]:
    """
    Fetch all feeds concurrently.

    Returns:
        (articles newest first, capped at max_articles; per-feed status list)
    """
    articles: List[Article] = []
    feed_status: List[Dict[str, Any]] = []
    if not feeds:
        return articles, feed_status

    with ThreadPoolExecutor(max_workers=len(feeds)) as executor:
        future_to_feed = {executor.submit(fetch_feed, feed, timeout): feed for feed in feeds}
        for future in as_completed(future_to_feed):
            feed = future_to_feed[future]
            try:
                items = future.result()
            except FetchError as e:
                logger.warning(f"News feed {feed.source} failed: {e.message}")
                feed_status.append({"source": feed.source, "ok": False, "error": e.message})
                continue
            articles.extend(items)
            feed_status.append({"source": feed.source, "ok": True, "count": len(items)})

    # Undated articles sort last
    articles.sort(key=_sort_key, reverse=True)
    feed_status.sort(key=lambda s: s["source"])
    logger.info(f"Collected {len(articles)} articles from {sum(1 for s in feed_status if s['ok'])}/{len(feeds)} feeds")
    return articles[:max_articles], feed_status
