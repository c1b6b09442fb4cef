"""
Live value resolution and time-series history.

Modules:
    coercion - numeric coercion to finite float or None
    series - compaction and series-based percentage change
    history - bounded, pruned, timestamped history per field
    change - windowed percentage change with since-start fallback
    resolver - ordered candidate chains and two-sided depth aggregation
    composite - pointwise composite indexes
    staleness - per-field staleness classification
    fields - field catalog (candidate chains, thresholds, indexes)
    snapshot - immutable snapshot model and persistent snapshot cache
    runner - refresh cycle, engine and scheduler
"""
