"""Prometheus metrics for loan transitions, reconciliations, scoring and notifications"""

from prometheus_client import Counter, Histogram

# Loan lifecycle metrics
loan_transition_counter = Counter(
    "microloan_loan_transitions_total",
    "Loan status transitions applied",
    ["status"],  # approved | rejected | disbursed | completed | defaulted ...
)

credit_limit_rejection_counter = Counter(
    "microloan_credit_limit_rejections_total",
    "Loan requests refused for exceeding available credit",
)

# Reconciliation metrics
reconciliation_counter = Counter(
    "microloan_reconciliations_total",
    "Transaction reconciliations processed",
    ["outcome"],  # completed | failed | duplicate
)

points_awarded_histogram = Histogram(
    "microloan_credit_points_awarded",
    "Credit score points awarded per repayment",
    buckets=[0, 5, 25, 50, 100, 200, 300, 500],
)

over_repayment_counter = Counter(
    "microloan_over_repayments_total",
    "Repayments that exceeded the outstanding amount",
)

store_retry_counter = Counter(
    "microloan_store_retries_total",
    "Units of work retried after a transient store error",
    ["error"],
)

# Notification metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transition(status: str) -> None:
    loan_transition_counter.labels(status=status).inc()


def record_reconciliation(outcome: str, points_awarded: int = 0, over_repayment: bool = False) -> None:
    """Record reconciliation outcome, awarded points and over-repayment flag"""
    reconciliation_counter.labels(outcome=outcome).inc()
    if outcome == "completed":
        points_awarded_histogram.observe(points_awarded)
    if over_repayment:
        over_repayment_counter.inc()
