"""Counters describing producer, consumer, event-processing and DLQ activity."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import timedelta


def _whole_millis(duration: timedelta | float) -> int:
    """Whole milliseconds in a timedelta or a number of seconds, truncated."""
    if isinstance(duration, timedelta):
        return duration // timedelta(milliseconds=1)
    return int(duration * 1000)


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


@dataclass
class KafkaMetrics:
    """Running totals for the messaging pipeline.

    Latency fields hold accumulated milliseconds; the averages divide them by
    the matching message counts.
    """

    # Producer
    messages_sent: int = 0
    send_errors: int = 0
    send_latency: int = 0
    batch_size: int = 0
    compression_ratio: int = 0

    # Consumer
    messages_consumed: int = 0
    consume_errors: int = 0
    consume_latency: int = 0
    consumer_lag: int = 0
    rebalance_count: int = 0

    # Event processing
    events_processed: int = 0
    processing_errors: int = 0
    processing_latency: int = 0
    version_conflicts: int = 0
    cache_updates: int = 0
    cache_update_errors: int = 0

    # Dead letter queue
    dlq_messages: int = 0
    dlq_retries: int = 0
    dlq_retry_success: int = 0
    dlq_retry_failures: int = 0

    # System
    memory_usage: int = 0
    cpu_usage: int = 0
    thread_count: int = 0
    connection_count: int = 0

    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def record_send_latency(self, duration: timedelta | float) -> None:
        """Add a send duration (timedelta or seconds) to the send latency total."""
        with self._lock:
            self.send_latency += _whole_millis(duration)

    def record_consume_latency(self, duration: timedelta | float) -> None:
        """Add a consume duration to the consume latency total."""
        with self._lock:
            self.consume_latency += _whole_millis(duration)

    def record_processing_latency(self, duration: timedelta | float) -> None:
        """Add a processing duration to the processing latency total."""
        with self._lock:
            self.processing_latency += _whole_millis(duration)

    def average_send_latency(self) -> float:
        """Mean send latency in milliseconds per sent message."""
        return _ratio(self.send_latency, self.messages_sent)

    def average_consume_latency(self) -> float:
        """Mean consume latency in milliseconds per consumed message."""
        return _ratio(self.consume_latency, self.messages_consumed)

    def average_processing_latency(self) -> float:
        """Mean processing latency in milliseconds per processed event."""
        return _ratio(self.processing_latency, self.events_processed)

    def error_rate(self) -> float:
        """Errors of all kinds divided by all messages and events handled."""
        errors = self.send_errors + self.consume_errors + self.processing_errors
        total = self.messages_sent + self.messages_consumed + self.events_processed
        return _ratio(errors, total)

    def dlq_retry_success_rate(self) -> float:
        """Share of dead-letter retries that succeeded."""
        return _ratio(self.dlq_retry_success, self.dlq_retries)