"""Prometheus metrics for batch submission and reconciliation monitoring.

Metrics are exposed at /metrics for Prometheus scraping.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest

from emp_ops.core.config import settings

app_info = Info("emp_ops", "EMP operations portal application info")
app_info.info({
    "version": settings.APP_VERSION,
    "environment": settings.ENVIRONMENT,
})

# Gateway traffic
gateway_calls_total = Counter(
    "emp_gateway_calls_total",
    "Payment gateway calls",
    ["operation", "outcome"],  # operation: submit|reconcile, outcome: ok|declined|error
)

gateway_call_duration_seconds = Histogram(
    "emp_gateway_call_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Batch submission
batch_rows_total = Counter(
    "emp_batch_rows_total",
    "Rows reaching a terminal outcome in a submission run",
    ["status"],
)

duplicate_retries_total = Counter(
    "emp_duplicate_retries_total",
    "Duplicate transaction id retries",
    ["resolution"],  # retried|adopted|exhausted
)

batch_run_duration_seconds = Histogram(
    "emp_batch_run_duration_seconds",
    "Batch submission run duration in seconds",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 900],
)

checkpoint_flushes_total = Counter(
    "emp_checkpoint_flushes_total",
    "Row-state checkpoint flushes",
    ["kind", "outcome"],  # kind: interval|final, outcome: ok|failed
)

# Compliance and filtering
cooldown_violations_total = Counter(
    "emp_cooldown_violations_total",
    "IBAN cooldown violations found",
    ["source"],
)

rows_filtered_total = Counter(
    "emp_rows_filtered_total",
    "Rows removed from uploads by filters",
    ["reason"],  # chargeback|blacklist|invalid
)

# Reconciliation
reconciliation_records_total = Counter(
    "emp_reconciliation_records_total",
    "Records classified during reconciliation",
    ["classification"],
)


def metrics_response() -> Response:
    """Render the current metrics in Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
