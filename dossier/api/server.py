"""
FastAPI server for the daily news brief.

Endpoints:
- GET  /health                    service and credential status
- GET  /digest?force=0|1          cached or regenerated daily brief
- GET  /api/news/daily-brief      alias of /digest
- POST /api/brief                 ad-hoc structured brief of arbitrary text
- GET  /api/osint/sources         news sources behind the brief

Usage:
    uvicorn dossier.api.server:app --port 8787
    python -m dossier.cli serve
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config.settings import load_settings
from ..digest.cache import DigestCache
from ..digest.summarizer import Summarizer, SummarizerError
from ..ingest.fetch_rss import NEWS_FEEDS

logger = logging.getLogger(__name__)


# Pydantic models
class TextBriefRequest(BaseModel):
    text: str = Field(default="", description="Text to summarize")
    scope: str = Field(default="general", description="Analyst focus, e.g. energy or LATAM politics")


class TextBrief(BaseModel):
    summary: str
    key_points: List[str]
    risks: List[str]
    confidence: str


class TextBriefResponse(BaseModel):
    ok: bool
    data: TextBrief


class HealthResponse(BaseModel):
    ok: bool
    model: str
    hasOpenAIKey: bool


class SourceInfo(BaseModel):
    id: str
    label: str
    type: str
    url: str


class SourcesResponse(BaseModel):
    sources: List[SourceInfo]


def _source_id(label: str) -> str:
    return "-".join(label.lower().split())


def create_app(
    settings: Optional[Dict[str, Any]] = None,
    summarizer: Optional[Summarizer] = None,
    digest_cache: Optional[DigestCache] = None,
) -> FastAPI:
    """Build the app. Collaborators default to ones configured from settings."""
    settings = settings or load_settings()
    digest_settings = settings["digest"]
    summarizer = summarizer or Summarizer(model=digest_settings["model"])
    digest_cache = digest_cache or DigestCache(
        digest_settings["cache_path"],
        summarizer,
        ttl_hours=digest_settings["ttl_hours"],
    )

    app = FastAPI(
        title="Dossier Digest API",
        description="Daily macro and geopolitical news brief",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        return HealthResponse(ok=True, model=summarizer.model, hasOpenAIKey=summarizer.has_credentials)

    def _daily_brief(force: str) -> Any:
        try:
            data = digest_cache.get_or_create(force=force == "1")
        except Exception as e:
            logger.exception("Daily brief failed")
            return JSONResponse(status_code=500, content={"error": "digest_failed", "detail": str(e)})
        return {"ok": True, "data": data}

    @app.get("/digest")
    def get_digest(force: str = Query(default="0")):
        """Daily brief; ``force=1`` regenerates regardless of cache state."""
        return _daily_brief(force)

    @app.get("/api/news/daily-brief")
    def get_daily_brief(force: str = Query(default="0")):
        return _daily_brief(force)

    @app.post("/api/brief", response_model=TextBriefResponse)
    def create_text_brief(request: TextBriefRequest):
        text = request.text.strip()
        scope = request.scope.strip() or "general"
        if not text:
            raise HTTPException(status_code=400, detail="text is required")
        if not summarizer.has_credentials:
            raise HTTPException(status_code=503, detail="OPENAI_API_KEY is missing in server env")

        try:
            data = summarizer.summarize_text(text, scope=scope)
        except SummarizerError as e:
            status = 429 if e.quota_exceeded else 500
            raise HTTPException(status_code=status, detail=f"Brief generation failed: {e.message}")
        return TextBriefResponse(ok=True, data=TextBrief(**data))

    @app.get("/api/osint/sources", response_model=SourcesResponse)
    def list_sources():
        return SourcesResponse(sources=[
            SourceInfo(id=_source_id(feed.source), label=feed.source, type="news", url=feed.url)
            for feed in NEWS_FEEDS
        ])

    app.state.settings = settings
    app.state.digest_cache = digest_cache
    return app


app = create_app()
