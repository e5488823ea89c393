from prometheus_client import Counter, Gauge, Histogram

# Registered once per process on the default registry, which also carries
# the process and platform collectors exported by /metrics.

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "endpoint", "status"],
    buckets=(0.1, 0.5, 1, 2, 5),
)

ACTIVE_ALERTS = Gauge(
    "active_alerts_total",
    "Number of unacknowledged alerts",
    ["severity"],
)

HEALTH_CHECK_PASSES = Counter(
    "health_check_passes_total",
    "Completed health sampling passes",
    ["outcome"],
)
