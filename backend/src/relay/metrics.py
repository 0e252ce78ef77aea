"""Delivery metrics for Prometheus monitoring."""
from prometheus_client import Counter, Histogram

# Delivery metrics
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Total webhook delivery attempts",
    labelnames=["outcome"],  # outcome: success, retryable, terminal
)

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Duration of outbound webhook HTTP calls",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Dead letter metrics
webhooks_dead_lettered_total = Counter(
    "webhooks_dead_lettered_total",
    "Total webhooks moved to the dead letter queue",
    labelnames=["reason"],  # reason: exhausted, non_retryable
)

webhooks_requeued_total = Counter(
    "webhooks_requeued_total",
    "Total webhooks re-queued from the dead letter queue",
)

# Queue metrics
delivery_jobs_enqueued_total = Counter(
    "delivery_jobs_enqueued_total",
    "Total delivery jobs inserted",
    labelnames=["profile"],
)

delivery_jobs_leased_total = Counter(
    "delivery_jobs_leased_total",
    "Total delivery job leases granted",
)

delivery_jobs_stalled_total = Counter(
    "delivery_jobs_stalled_total",
    "Total expired leases released by the stalled sweep",
)

delivery_jobs_dropped_total = Counter(
    "delivery_jobs_dropped_total",
    "Total jobs acknowledged without delivery (webhook missing or no longer pending)",
    labelnames=["reason"],
)
