"""Structured logging of DLQ, recovery, metric and error events."""

from __future__ import annotations

import logging
import uuid

from .metrics import KafkaMetrics

_logger = logging.getLogger(__name__)

ERROR_RATE_THRESHOLD = 0.1
CONSUMER_LAG_THRESHOLD = 1000
MEMORY_USAGE_THRESHOLD = 1_000_000_000
CPU_USAGE_THRESHOLD = 80


class KafkaTracing:
    """Writes log records for pipeline operations, tagged with a span name."""

    def __init__(self, metrics: KafkaMetrics, logger: logging.Logger | None = None) -> None:
        self.metrics = metrics
        self._logger = logger or _logger

    def _log(self, level: int, span: str, message: str, **fields: object) -> None:
        self._logger.log(level, message, extra={"span": span, "span_fields": fields})

    def trace_dlq_operation(
        self, account_id: uuid.UUID, operation: str, retry_count: int
    ) -> None:
        """Log a dead-letter-queue operation for an account."""
        self._log(
            logging.INFO,
            "dlq_operation",
            f"DLQ operation '{operation}' for account {account_id} (retry {retry_count})",
            account_id=str(account_id),
            operation=operation,
            retry_count=retry_count,
        )

    def trace_recovery_operation(
        self, strategy: str, account_id: uuid.UUID | None, status: str
    ) -> None:
        """Log a recovery step, optionally for one account."""
        self._log(
            logging.INFO,
            "recovery_operation",
            f"Recovery operation '{strategy}' for account {account_id}: {status}",
            strategy=strategy,
            account_id=None if account_id is None else str(account_id),
            status=status,
        )

    def trace_metrics(self) -> None:
        """Log error rate, processing latency and consumer lag; warn when high."""
        error_rate = self.metrics.error_rate()
        latency = self.metrics.average_processing_latency()
        lag = self.metrics.consumer_lag
        self._log(
            logging.INFO,
            "metrics_snapshot",
            f"Metrics snapshot: error_rate={error_rate * 100.0:.2f}%, "
            f"processing_latency={latency:.2f}ms, consumer_lag={lag}",
        )
        if error_rate > ERROR_RATE_THRESHOLD:
            self._log(
                logging.WARNING,
                "metrics_snapshot",
                f"High error rate detected: {error_rate * 100.0:.2f}%",
            )
        if lag > CONSUMER_LAG_THRESHOLD:
            self._log(
                logging.WARNING,
                "metrics_snapshot",
                f"High consumer lag detected: {lag}",
            )

    def trace_performance_metrics(self) -> None:
        """Log memory, CPU and thread counts; warn when memory or CPU is high."""
        memory = self.metrics.memory_usage
        cpu = self.metrics.cpu_usage
        threads = self.metrics.thread_count
        self._log(
            logging.INFO,
            "performance_metrics",
            f"Performance metrics: memory={memory / 1_000_000.0:.2f}MB, "
            f"cpu={cpu / 100.0:.1f}%, threads={threads}",
        )
        if memory > MEMORY_USAGE_THRESHOLD:
            self._log(
                logging.WARNING,
                "performance_metrics",
                f"High memory usage: {memory / 1e9:.2f}GB",
            )
        if cpu > CPU_USAGE_THRESHOLD:
            self._log(
                logging.WARNING,
                "performance_metrics",
                f"High CPU usage: {cpu / 100.0:.1f}%",
            )

    def trace_error(self, error: BaseException | str, context: str) -> None:
        """Log an error together with the context it happened in."""
        self._log(
            logging.ERROR,
            "error",
            f"Error in {context}: {error}",
            context=context,
            error=str(error),
        )