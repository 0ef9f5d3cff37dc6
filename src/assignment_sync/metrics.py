from prometheus_client import Counter, Histogram, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


SYNC_ATTEMPTS_TOTAL = get_or_create_metric(
    "calsync_sync_attempts_total",
    "Single-assignment sync attempts by action and outcome",
    Counter,
    labelnames=["action", "status"],
)

DRIFT_RECOVERIES_TOTAL = get_or_create_metric(
    "calsync_drift_recoveries_total",
    "Mapped events that were missing on the provider and got recreated",
    Counter,
)

TOKEN_REFRESH_TOTAL = get_or_create_metric(
    "calsync_token_refresh_total",
    "Access token refreshes by outcome",
    Counter,
    labelnames=["status"],
)

BATCH_ITEMS_TOTAL = get_or_create_metric(
    "calsync_batch_items_total",
    "Items processed by full sync runs",
    Counter,
    labelnames=["status"],
)

PROVIDER_CALL_LATENCY_SECONDS = get_or_create_metric(
    "calsync_provider_call_latency_seconds",
    "Latency of Google Calendar API calls",
    Histogram,
    labelnames=["operation"],
)

REQUESTS_TOTAL = get_or_create_metric(
    "calsync_requests_total",
    "HTTP requests by endpoint and outcome",
    Counter,
    labelnames=["endpoint", "status"],
)
