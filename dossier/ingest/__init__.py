"""
Upstream ingestion: request definitions, concurrent batch fetching,
per-upstream health, and news feed collection.
"""
