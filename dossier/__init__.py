"""
Dossier - resilient market value resolution and time-series history.

Modules:
    live - value resolution, history, windowed change, composite indexes, snapshots
    ingest - upstream fetching with concurrent fan-out and health tracking
    digest - daily news brief with TTL cache and heuristic fallback
    api - FastAPI digest server
    cli - Command-line interface entrypoints
"""

__version__ = "1.0.0"
