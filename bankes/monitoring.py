"""Dashboard that samples pipeline metrics, raises alerts and tracks health."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from .metrics import KafkaMetrics

ERROR_RATE_THRESHOLD = 0.1
CONSUMER_LAG_THRESHOLD = 1000
MEMORY_USAGE_THRESHOLD = 1_000_000_000
COMPONENT_ERROR_THRESHOLD = 100
DLQ_SIZE_THRESHOLD = 1000
RETENTION = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertSeverity(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ServiceStatus(enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class MetricsSnapshot:
    error_rate: float
    processing_latency: float
    consumer_lag: int
    memory_usage: int
    cpu_usage: int
    events_processed: int
    dlq_size: int


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: datetime
    metrics: MetricsSnapshot


@dataclass(frozen=True)
class Alert:
    severity: AlertSeverity
    message: str
    timestamp: datetime
    metric_name: str
    threshold: float
    current_value: float


@dataclass(frozen=True)
class ComponentHealth:
    name: str
    status: ServiceStatus
    details: str


@dataclass
class HealthStatus:
    status: ServiceStatus
    last_check: datetime
    components: list[ComponentHealth] = field(default_factory=list)


@dataclass(frozen=True)
class MetricsSummary:
    current_error_rate: float
    current_processing_latency: float
    current_consumer_lag: int
    current_memory_usage: int
    current_cpu_usage: int
    total_events_processed: int
    total_errors: int
    dlq_size: int
    active_alerts: int
    health_status: ServiceStatus


class MonitoringDashboard:
    """Keeps a 24-hour time series of metric snapshots, alerts and health."""

    def __init__(
        self,
        metrics: KafkaMetrics,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.metrics = metrics
        self._clock = clock or _utcnow
        self.time_series_data: list[TimeSeriesPoint] = []
        self.alerts: list[Alert] = []
        self.health_status = HealthStatus(
            status=ServiceStatus.HEALTHY, last_check=self._clock()
        )

    def record_metrics(self) -> None:
        """Append a snapshot and drop points older than 24 hours."""
        m = self.metrics
        snapshot = MetricsSnapshot(
            error_rate=m.error_rate(),
            processing_latency=m.average_processing_latency(),
            consumer_lag=m.consumer_lag,
            memory_usage=m.memory_usage,
            cpu_usage=m.cpu_usage,
            events_processed=m.events_processed,
            dlq_size=m.dlq_messages,
        )
        now = self._clock()
        self.time_series_data.append(TimeSeriesPoint(timestamp=now, metrics=snapshot))
        cutoff = now - RETENTION
        self.time_series_data = [
            point for point in self.time_series_data if point.timestamp > cutoff
        ]

    def check_alerts(self) -> None:
        """Raise alerts for a high error rate, consumer lag or memory usage."""
        error_rate = self.metrics.error_rate()
        if error_rate > ERROR_RATE_THRESHOLD:
            self._raise(
                AlertSeverity.CRITICAL,
                f"High error rate: {error_rate * 100.0:.2f}%",
                "error_rate",
                ERROR_RATE_THRESHOLD,
                error_rate,
            )

        consumer_lag = self.metrics.consumer_lag
        if consumer_lag > CONSUMER_LAG_THRESHOLD:
            self._raise(
                AlertSeverity.WARNING,
                f"High consumer lag: {consumer_lag}",
                "consumer_lag",
                float(CONSUMER_LAG_THRESHOLD),
                float(consumer_lag),
            )

        memory_usage = self.metrics.memory_usage
        if memory_usage > MEMORY_USAGE_THRESHOLD:
            self._raise(
                AlertSeverity.WARNING,
                f"High memory usage: {memory_usage / 1e9:.2f}GB",
                "memory_usage",
                float(MEMORY_USAGE_THRESHOLD),
                float(memory_usage),
            )

    def _raise(
        self,
        severity: AlertSeverity,
        message: str,
        metric_name: str,
        threshold: float,
        current_value: float,
    ) -> None:
        self.alerts.append(
            Alert(
                severity=severity,
                message=message,
                timestamp=self._clock(),
                metric_name=metric_name,
                threshold=threshold,
                current_value=current_value,
            )
        )

    def update_health_status(self) -> None:
        """Recompute the health of the producer, consumer and dead letter queue."""
        m = self.metrics
        checks = [
            ("Kafka Producer", m.send_errors, COMPONENT_ERROR_THRESHOLD, "Send errors"),
            ("Kafka Consumer", m.consume_errors, COMPONENT_ERROR_THRESHOLD, "Consume errors"),
            ("Dead Letter Queue", m.dlq_messages, DLQ_SIZE_THRESHOLD, "DLQ size"),
        ]
        components = [
            ComponentHealth(
                name=name,
                status=ServiceStatus.DEGRADED if value > limit else ServiceStatus.HEALTHY,
                details=f"{label}: {value}",
            )
            for name, value, limit, label in checks
        ]
        overall = (
            ServiceStatus.DEGRADED
            if any(c.status is ServiceStatus.DEGRADED for c in components)
            else ServiceStatus.HEALTHY
        )
        self.health_status = HealthStatus(
            status=overall, last_check=self._clock(), components=components
        )

    def metrics_summary(self) -> MetricsSummary:
        """Summarise the latest snapshot together with running totals."""
        latest = self.time_series_data[-1].metrics if self.time_series_data else None
        return MetricsSummary(
            current_error_rate=latest.error_rate if latest else 0.0,
            current_processing_latency=latest.processing_latency if latest else 0.0,
            current_consumer_lag=latest.consumer_lag if latest else 0,
            current_memory_usage=latest.memory_usage if latest else 0,
            current_cpu_usage=latest.cpu_usage if latest else 0,
            total_events_processed=self.metrics.events_processed,
            total_errors=self.metrics.processing_errors,
            dlq_size=self.metrics.dlq_messages,
            active_alerts=len(self.alerts),
            health_status=self.health_status.status,
        )