from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
)

# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------
fetch_requests_total = Counter(
    "ingest_fetch_requests_total",
    "Total fetch attempts by outcome (success or FetchError code)",
    ["outcome"],
)
fetch_duration_seconds = Histogram(
    "ingest_fetch_duration_seconds",
    "Time spent fetching a single URL including redirects",
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
)
fetch_bytes_total = Counter(
    "ingest_fetch_bytes_total",
    "Total body bytes read by the fetcher",
)

# ---------------------------------------------------------------------------
# Policy checks
# ---------------------------------------------------------------------------
rate_limit_rejections_total = Counter(
    "ingest_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["scope"],
)
robots_cache_total = Counter(
    "ingest_robots_cache_total",
    "robots.txt cache lookups by result",
    ["result"],
)

# ---------------------------------------------------------------------------
# Content classification
# ---------------------------------------------------------------------------
sanitizer_removed_total = Counter(
    "ingest_sanitizer_removed_total",
    "Elements removed or neutralised by the HTML sanitizer",
    ["category"],
)
quality_recommendations_total = Counter(
    "ingest_quality_recommendations_total",
    "Quality gate routing decisions",
    ["recommendation"],
)
spa_bypass_total = Counter(
    "ingest_spa_bypass_total",
    "SPA bypass metadata lookups by method that produced the title",
    ["method"],
)

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
redis_connection_status = Gauge(
    "ingest_redis_connection_status",
    "Redis connection status (1=connected, 0=disconnected)",
)
cache_write_failures_total = Counter(
    "ingest_cache_write_failures_total",
    "Background parse-result cache writes that failed",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
