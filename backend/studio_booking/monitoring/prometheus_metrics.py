"""
Prometheus metrics for the booking engine.

Service timings come from ``BaseService.measure_operation``; the engine adds
counters for slot locks, capacity conflicts and hold lifecycle events.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "studio_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "studio_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "studio_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

slot_lock_events_total = Counter(
    "studio_slot_lock_events_total",
    "Slot/giftcard lock acquisitions and releases by outcome",
    ["action", "outcome"],
    registry=REGISTRY,
)

capacity_conflicts_total = Counter(
    "studio_capacity_conflicts_total",
    "Submissions rejected because a slot filled before persistence",
    ["mode"],
    registry=REGISTRY,
)

giftcard_hold_events_total = Counter(
    "studio_giftcard_hold_events_total",
    "Gift card hold lifecycle transitions",
    ["event"],  # created | consumed | released | expired
    registry=REGISTRY,
)

notification_events_total = Counter(
    "studio_notification_events_total",
    "Notification events handed to delivery, by outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade so call sites do not touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str,
        error_type: str | None = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_slot_lock(action: str, outcome: str) -> None:
        slot_lock_events_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_capacity_conflict(mode: str) -> None:
        capacity_conflicts_total.labels(mode=mode).inc()

    @staticmethod
    def record_hold_event(event: str) -> None:
        giftcard_hold_events_total.labels(event=event).inc()

    @staticmethod
    def record_notification(event_type: str, outcome: str) -> None:
        notification_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
