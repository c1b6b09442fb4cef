"""
Daily news brief.

Modules:
    models - Brief and Digest shapes
    heuristic - keyword-classified headline brief used when the AI summarizer is unavailable
    summarizer - OpenAI-backed brief writer
    cache - server-side cache and regeneration policy
    client - core-side HTTP client for the digest server
"""
