"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
jobs_created_total = Counter(
    "generation_jobs_created_total",
    "Total number of generation jobs created",
    ["style_id"],
)

jobs_finalized_total = Counter(
    "generation_jobs_finalized_total",
    "Total number of finalized generation jobs",
    ["status"],  # completed, failed
)

task_submissions_total = Counter(
    "generation_task_submissions_total",
    "Task provider submit attempts",
    ["status"],  # success, retry, failed
)

task_terminal_total = Counter(
    "generation_tasks_terminal_total",
    "Tasks reaching a terminal state",
    ["status", "source"],  # source: poll, webhook, sweep, dispatch
)

refunds_total = Counter(
    "payment_refunds_total",
    "Payment refund outcomes",
    ["status"],  # completed, failed, skipped
)

ledger_operations_total = Counter(
    "referral_ledger_operations_total",
    "Referral ledger operations",
    ["operation"],  # CREDIT, DEBIT, CREDIT_BACK, CANCEL
)

balance_rejected_total = Counter(
    "referral_balance_rejected_total",
    "Ledger debits rejected for insufficient balance",
)

withdrawal_transitions_total = Counter(
    "withdrawal_transitions_total",
    "Withdrawal state transitions",
    ["status"],
)

telegram_requests_total = Counter(
    "telegram_requests_total",
    "Total Telegram API requests",
    ["method", "status"],
)

provider_requests_total = Counter(
    "provider_requests_total",
    "External provider API requests",
    ["provider", "method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
telegram_request_duration_seconds = Histogram(
    "telegram_request_duration_seconds",
    "Telegram API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "External provider API request duration",
    ["provider", "method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
