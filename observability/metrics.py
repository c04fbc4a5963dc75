# observability/metrics.py
# Prometheus metrics for proof-of-life, switch trips, distribution plans, transfers and the sentinel.

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# --- Proof of life ---
heartbeats_total = Counter(
    "sileme_heartbeats_total",
    "Heartbeat attempts by result",
    ["result"]  # accepted|rejected
)
days_silent = Gauge(
    "sileme_days_silent",
    "Days since the last recorded proof of life"
)
countdown_remaining_ms = Gauge(
    "sileme_countdown_remaining_ms",
    "Remaining time on the sealed-will countdown (ms)"
)
countdown_fires_total = Counter(
    "sileme_countdown_fires_total",
    "Countdown callbacks fired",
    ["how"]  # natural|forced
)

# --- Switch / protocol ---
switch_trips_total = Counter(
    "sileme_switch_trips_total",
    "Number of times the dead man switch tripped",
    ["reason"]  # inactivity|countdown
)
protocol_status = Gauge(
    "sileme_protocol_status",
    "1 for the current protocol status, 0 otherwise",
    ["status"]
)
transitions_rejected_total = Counter(
    "sileme_transitions_rejected_total",
    "Operator actions rejected by the state machine",
    ["action"]
)

# --- Distribution / transfers ---
plans_total = Counter(
    "sileme_plans_total",
    "Distribution plans computed",
    ["valid"]  # true|false
)
transfers_total = Counter(
    "sileme_transfers_total",
    "Transfers attempted by outcome",
    ["status"]  # SUCCESS|FAILED
)
transfer_seconds = Histogram(
    "sileme_transfer_seconds",
    "Ledger transfer latency (seconds)",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120]
)

# --- External collaborators ---
sentinel_scans_total = Counter(
    "sileme_sentinel_scans_total",
    "Sentinel scans by reported status",
    ["status"]
)
interpretation_fallbacks_total = Counter(
    "sileme_interpretation_fallbacks_total",
    "Times the intent interpreter failed and the fallback beneficiary was used",
    []
)


def set_protocol_status(current: str, all_statuses) -> None:
    for s in all_statuses:
        name = getattr(s, "value", str(s))
        protocol_status.labels(status=name).set(1.0 if name == current else 0.0)


def serve_metrics(port: int = 9100):
    """Expose /metrics on http://localhost:<port>/metrics"""
    start_http_server(port)
