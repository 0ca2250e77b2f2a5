"""
Prometheus metrics: transitions (API), side effects, notification delivery (worker), queue depth (SQS).
"""
from prometheus_client import Counter, Gauge, generate_latest

# Lifecycle: committed and rejected transitions
transitions_total = Counter(
    "order_transitions_total",
    "Total committed order status changes",
    ["status_from", "status_to"],
)
transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transition requests rejected before any write",
    ["target_status", "reason"],
)

# Side effects run after commit
side_effect_failures_total = Counter(
    "order_side_effect_failures_total",
    "Total side effects that failed after a committed transition",
    ["effect"],
)
packing_slips_created_total = Counter(
    "packing_slips_created_total",
    "Total packing slips created",
    ["source"],
)
notifications_enqueued_total = Counter(
    "notifications_enqueued_total",
    "Total notifications handed to the queue",
    ["notification_type"],
)

# Worker: delivery outcomes
notifications_delivered_total = Counter(
    "notifications_delivered_total",
    "Total notifications delivered to the email service",
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total delivery attempts that failed (retried or sent to DLQ)",
)
notifications_dlq_total = Counter(
    "notifications_dlq_total",
    "Total notifications moved to DLQ after max retries",
)

# SQS queue depth (when using SQS)
sqs_queue_messages_waiting = Gauge(
    "sqs_queue_messages_waiting",
    "Approximate number of notifications waiting in SQS",
)
sqs_queue_messages_in_flight = Gauge(
    "sqs_queue_messages_in_flight",
    "Approximate number of notifications in flight (received but not yet deleted)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
