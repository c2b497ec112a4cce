from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Scrape outcomes
# ---------------------------------------------------------------------------
scrape_requests_total = Counter(
    "scrape_requests_total",
    "Total number of scrape requests",
    ["engine", "status"],
)
scrape_duration_seconds = Histogram(
    "scrape_duration_seconds",
    "Time spent scraping a single URL",
    ["engine"],
    buckets=[0.5, 1, 2, 5, 10, 30, 60],
)
scrape_attempts_total = Counter(
    "scrape_attempts_total",
    "Fetch attempts by engine and outcome",
    ["engine", "outcome"],
)
selector_outcomes_total = Counter(
    "selector_outcomes_total",
    "Selector hits and misses",
    ["status"],
)

# ---------------------------------------------------------------------------
# Engine router
# ---------------------------------------------------------------------------
router_decisions_total = Counter(
    "router_decisions_total",
    "Engine routing decisions by engine and source",
    ["engine", "source"],
)
router_probe_duration_seconds = Histogram(
    "router_probe_duration_seconds",
    "Duration of the routing probe request",
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5],
)

# ---------------------------------------------------------------------------
# Proxy pool
# ---------------------------------------------------------------------------
proxy_selections_total = Counter(
    "proxy_selections_total",
    "Proxy selection attempts by result",
    ["result"],
)
proxy_usage_total = Counter(
    "proxy_usage_total",
    "Proxy usage reports by status",
    ["status"],
)

# ---------------------------------------------------------------------------
# Browser pool
# ---------------------------------------------------------------------------
active_browser_contexts = Gauge(
    "active_browser_contexts",
    "Number of currently active browser contexts",
)
browser_pool_exhausted_total = Counter(
    "browser_pool_exhausted_total",
    "Number of times the browser pool was exhausted",
)
browser_launches_total = Counter(
    "browser_launches_total",
    "Number of browser process launches",
)

# ---------------------------------------------------------------------------
# Side-effect dispatcher
# ---------------------------------------------------------------------------
dispatcher_jobs_total = Counter(
    "dispatcher_jobs_total",
    "Background side-effect jobs by kind and outcome",
    ["kind", "status"],
)
dispatcher_queue_depth = Gauge(
    "dispatcher_queue_depth",
    "Number of side-effect jobs waiting in the queue",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
