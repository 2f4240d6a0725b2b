"""Prometheus metrics for import outcomes, row counts, statement upkeep and webhook performance"""

from prometheus_client import Counter, Histogram

# Import metrics
import_counter = Counter(
    "ledger_import_total",
    "Statement imports processed",
    ["outcome"],  # succeeded | failed | rejected
)

import_rows_counter = Counter(
    "ledger_import_rows_total",
    "Statement rows by what the import did with them",
    ["kind"],  # expense | income | duplicate
)

statement_recalculation_failures_counter = Counter(
    "statement_recalculation_failures_total",
    "Post-commit statement total recomputations that failed",
)

# Refund matcher metrics
refund_matcher_failures_counter = Counter(
    "refund_matcher_failures_total",
    "Failed refund matcher calls",
)

# View invalidation webhook metrics
view_invalidation_latency_histogram = Histogram(
    "view_invalidation_latency_seconds",
    "View invalidation webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

view_invalidation_failure_counter = Counter(
    "view_invalidation_failures_total",
    "Failed view invalidation deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_import(imported_expenses: int, imported_income: int, skipped_duplicates: int) -> None:
    """Record a successful import and what happened to its rows"""
    import_counter.labels(outcome="succeeded").inc()
    import_rows_counter.labels(kind="expense").inc(imported_expenses)
    import_rows_counter.labels(kind="income").inc(imported_income)
    import_rows_counter.labels(kind="duplicate").inc(skipped_duplicates)


def record_import_failure(rejected: bool) -> None:
    """Rejected = validation failure before any write; failed = rolled back"""
    import_counter.labels(outcome="rejected" if rejected else "failed").inc()
