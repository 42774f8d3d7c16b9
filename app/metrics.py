from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

RECONCILIATIONS = Counter(
    "payment_reconciliations_total",
    "Payment reconciliation attempts by outcome",
    ["outcome"],
)
RECONCILED_AMOUNT = Counter(
    "payment_reconciled_amount_total",
    "Amount applied to bills by the reconciliation engine",
)
UNAPPLIED_AMOUNT = Counter(
    "payment_unapplied_amount_total",
    "Overpayment remainder left unapplied after reconciliation",
)
GATEWAY_EVENTS = Counter(
    "payment_gateway_events_total",
    "Gateway webhook events by gateway and disposition",
    ["gateway", "disposition"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def observe_reconciliation(outcome: str, applied=None, unapplied=None) -> None:
    RECONCILIATIONS.labels(outcome=outcome).inc()
    if applied:
        RECONCILED_AMOUNT.inc(float(applied))
    if unapplied:
        UNAPPLIED_AMOUNT.inc(float(unapplied))
