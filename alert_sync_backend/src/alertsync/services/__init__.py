"""Alert sync engine services.

- priority.py (per-region alert resolution and aggregation)
- live_status.py (active-alerts poller with degraded fallback)
- history_sync.py (rate-limited, retry-capped history back-fill into the TTL cache)
- message_merge.py (history + live merge with same-event dedup)
- feed_service.py (route-facing functions that shape API responses)
"""
