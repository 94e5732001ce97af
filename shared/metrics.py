"""Prometheus metrics for the integration and sync pipeline.

Counters and histograms at each stage: OAuth callback, provider calls,
sync runs, persisted records. Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# OAuth handoff
oauth_callbacks_total = Counter(
    "oauth_callbacks_total",
    "OAuth callbacks handled, by outcome",
    ["provider", "outcome"],  # outcome: connected, session_expired, denied, missing_code, exchange_failed
)

# Provider calls
provider_requests_total = Counter(
    "provider_requests_total",
    "Per-domain provider fetches, by result",
    ["domain", "status"],  # status: success, empty, failed
)

provider_api_duration_seconds = Histogram(
    "provider_api_duration_seconds",
    "Duration of provider API calls",
    ["domain"],
)

# Sync runs
sync_runs_total = Counter(
    "sync_runs_total",
    "Sync runs by trigger and terminal state",
    ["trigger", "state"],  # state: completed, partially_failed, failed
)

sync_records_total = Counter(
    "sync_records_total",
    "Canonical records upserted by sync",
    ["domain"],
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds",
    "Duration of a full sync run over the date window",
    ["trigger"],
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
