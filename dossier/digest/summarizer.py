"""
OpenAI-backed brief writer.

Usage:
    summarizer = Summarizer(model="gpt-4o-mini")
    brief = summarizer.summarize(articles)      # raises SummarizerError
    data = summarizer.summarize_text(text, scope="energy")
"""

import json
import logging
from typing import Any, Dict, Optional, Sequence

import openai
from openai import OpenAI

from ..config.secrets import OPENAI_KEY_NAME, get_openai_key, optional_key
from ..ingest.fetch_rss import Article
from .models import CONFIDENCE_LEVELS, Brief

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_INPUT_ARTICLES = 40

DAILY_BRIEF_PROMPT = " ".join([
    "You are a macro and geopolitical risk editor.",
    "Your task: produce a clear daily brief for a financial dashboard.",
    "Do not invent facts and do not cite sources outside the given list.",
    "Return valid JSON with a short summary, actionable bullets and risks.",
])

TEXT_BRIEF_PROMPT = (
    "You are an intelligence analyst assistant. Scope: {scope}. Return valid JSON with keys: "
    "summary, key_points, risks, confidence. Keep concise and neutral."
)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_CONFIDENCE = {"type": "string", "enum": list(CONFIDENCE_LEVELS)}

DAILY_BRIEF_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "macro": _STRING_LIST,
        "geo": _STRING_LIST,
        "risks": _STRING_LIST,
        "watchlist": _STRING_LIST,
        "confidence": _CONFIDENCE,
    },
    "required": ["summary", "macro", "geo", "risks", "watchlist", "confidence"],
}

TEXT_BRIEF_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "key_points": _STRING_LIST,
        "risks": _STRING_LIST,
        "confidence": _CONFIDENCE,
    },
    "required": ["summary", "key_points", "risks", "confidence"],
}


class SummarizerError(Exception):
    """Raised when the model cannot produce a brief."""
    def __init__(self, message: str, quota_exceeded: bool = False):
        self.message = message
        self.quota_exceeded = quota_exceeded
        super().__init__(message)


def is_quota_error(message: str) -> bool:
    return "429" in message or "quota" in message.lower()


def get_openai_client() -> OpenAI:
    """Build a client from OPENAI_API_KEY (raises MissingAPIKeyError)."""
    return OpenAI(api_key=get_openai_key())


def build_digest_input(articles: Sequence[Article], limit: int = MAX_INPUT_ARTICLES) -> str:
    """Numbered headline list fed to the model."""
    rows = []
    for idx, article in enumerate(articles[:limit], start=1):
        when = article.published_at or "unknown_time"
        rows.append(f"{idx}. [{article.source}] {article.title} ({when})")
    return "\n".join(rows)


class Summarizer:
    def __init__(self, model: str = DEFAULT_MODEL, client: Optional[Any] = None):
        self.model = model
        self._client = client

    @property
    def has_credentials(self) -> bool:
        return self._client is not None or optional_key(OPENAI_KEY_NAME) is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def _complete(self, system_prompt: str, user_content: str, schema_name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": schema_name, "strict": True, "schema": schema},
                },
            )
        except openai.RateLimitError as e:
            raise SummarizerError(f"Rate limited: {e}", quota_exceeded=True) from e
        except openai.OpenAIError as e:
            message = str(e)
            raise SummarizerError(message, quota_exceeded=is_quota_error(message)) from e

        content = response.choices[0].message.content or "{}"
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SummarizerError(f"Model returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SummarizerError("Model returned a non-object JSON document")
        return data

    def summarize(self, articles: Sequence[Article]) -> Brief:
        """
        Write the daily brief from the newest articles.

        Raises:
            SummarizerError: On API failure or malformed output
            MissingAPIKeyError: If no client was given and OPENAI_API_KEY is unset
        """
        data = self._complete(DAILY_BRIEF_PROMPT, build_digest_input(articles), "daily_news_brief", DAILY_BRIEF_SCHEMA)
        brief = Brief.from_dict({**data, "reason": None})
        if not brief.summary:
            raise SummarizerError("Model returned an empty summary")
        logger.info(f"Summarized {min(len(articles), MAX_INPUT_ARTICLES)} articles with {self.model}")
        return brief

    def summarize_text(self, text: str, scope: str = "general") -> Dict[str, Any]:
        """Ad-hoc structured brief of arbitrary text."""
        data = self._complete(TEXT_BRIEF_PROMPT.format(scope=scope), text, "brief", TEXT_BRIEF_SCHEMA)
        confidence = data.get("confidence")
        return {
            "summary": str(data.get("summary") or ""),
            "key_points": [str(p) for p in data.get("key_points") or []],
            "risks": [str(r) for r in data.get("risks") or []],
            "confidence": confidence if confidence in CONFIDENCE_LEVELS else "low",
        }
