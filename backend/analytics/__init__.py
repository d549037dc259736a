"""
analytics: derived call statistics computed from the in-memory cache.

Modules
-------
    analytics.call_stats     Totals, direction/status counts, per-agent stats.
    analytics.time_buckets   Daily / weekly volume buckets (pandas).
"""
