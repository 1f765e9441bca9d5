"""Prometheus metrics for payment outcomes, gateway health and background jobs"""

from prometheus_client import Counter, Histogram

# Payment metrics
payment_initiation_counter = Counter(
    "hirepay_payment_initiations_total",
    "Payment charges initiated",
    ["outcome"],  # pending | failed | gateway_error
)

settlement_counter = Counter(
    "hirepay_settlements_total",
    "Payments settled and allocated",
    ["source"],  # callback | status_poll | retry_reconcile | manual
)

callback_counter = Counter(
    "hirepay_callbacks_total",
    "Gateway callbacks received",
    ["outcome"],  # settled | duplicate | failed | stale | pending | not_found | invalid | error
)

unapplied_funds_counter = Counter(
    "hirepay_unapplied_funds_pesewas_total",
    "Pesewas received beyond what penalties and installments could absorb",
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "hirepay_gateway_latency_seconds",
    "Hubtel API response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

gateway_failure_counter = Counter(
    "hirepay_gateway_failures_total",
    "Failed Hubtel API calls",
    ["operation", "kind"],  # kind: timeout | unavailable | response
)

sms_failure_counter = Counter(
    "hirepay_sms_failures_total",
    "Failed SMS delivery attempts",
)

# Retry and jobs
retry_attempt_counter = Counter(
    "hirepay_retry_attempts_total",
    "Automatic and manual payment retries",
    ["outcome"],  # pending | failed | settled | skipped
)

job_run_counter = Counter(
    "hirepay_job_runs_total",
    "Background job runs",
    ["job", "result"],  # result: completed | skipped | error
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_callback(outcome: str) -> None:
    callback_counter.labels(outcome=outcome).inc()


def record_job_run(job: str, result: str) -> None:
    job_run_counter.labels(job=job, result=result).inc()
