from prometheus_client import Counter, Gauge, Histogram

DIGEST_PASS_DURATION = Histogram(
    "smart_digest_pass_duration_seconds",
    "Duration of digest evaluation passes",
)
DIGEST_RESULTS = Counter(
    "smart_digest_results_total",
    "Digest fire decisions by cadence and outcome",
    ["cadence", "status"],
)
DIGEST_ERRORS = Counter(
    "smart_digest_errors_total",
    "Unexpected scheduler errors",
    ["context"],
)
DIGEST_NEXT_SLEEP = Gauge(
    "smart_digest_next_sleep_seconds",
    "Sleep planned before the next digest pass",
)
