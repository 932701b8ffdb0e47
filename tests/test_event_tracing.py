import logging
import uuid

import pytest

from bankes.event_tracing import KafkaTracing
from bankes.metrics import KafkaMetrics

LOGGER = "bankes.event_tracing"
ACCOUNT = uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def capture(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER)
    return caplog


def _warnings(caplog):
    return [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]


def test_dlq_operation_message_and_span(capture):
    KafkaTracing(KafkaMetrics()).trace_dlq_operation(ACCOUNT, "retry", 2)
    record = capture.records[-1]
    assert record.getMessage() == f"DLQ operation 'retry' for account {ACCOUNT} (retry 2)"
    assert record.span == "dlq_operation"
    assert record.span_fields["retry_count"] == 2


def test_recovery_operation_with_and_without_account(capture):
    tracing = KafkaTracing(KafkaMetrics())
    tracing.trace_recovery_operation("full_replay", ACCOUNT, "started")
    tracing.trace_recovery_operation("dlq_only", None, "done")
    messages = [r.getMessage() for r in capture.records]
    assert messages[-2] == f"Recovery operation 'full_replay' for account {ACCOUNT}: started"
    assert messages[-1] == "Recovery operation 'dlq_only' for account None: done"
    assert capture.records[-1].span_fields["account_id"] is None


def test_trace_metrics_quiet_when_healthy(capture):
    metrics = KafkaMetrics(consumer_lag=1000)
    KafkaTracing(metrics).trace_metrics()
    assert metrics.error_rate() == 0.0
    assert _warnings(capture) == []
    message = capture.records[-1].getMessage()
    assert message.startswith("Metrics snapshot:")
    assert message.endswith("consumer_lag=1000")


def test_trace_metrics_warns_on_lag(capture):
    metrics = KafkaMetrics(consumer_lag=1500)
    KafkaTracing(metrics).trace_metrics()
    assert metrics.error_rate() == 0.0
    assert _warnings(capture) == ["High consumer lag detected: 1500"]


def test_trace_metrics_warns_on_error_rate(capture):
    metrics = KafkaMetrics(messages_sent=1, send_errors=1)
    KafkaTracing(metrics).trace_metrics()
    assert metrics.error_rate() == 1.0
    assert _warnings(capture) == ["High error rate detected: 100.00%"]


def test_performance_metrics_warn_on_memory(capture):
    metrics = KafkaMetrics(memory_usage=2_000_000_000)
    KafkaTracing(metrics).trace_performance_metrics()
    assert metrics.average_send_latency() == 0.0
    assert _warnings(capture) == ["High memory usage: 2.00GB"]


def test_performance_metrics_cpu_threshold(capture):
    tracing_metrics = KafkaMetrics(cpu_usage=80, thread_count=4)
    KafkaTracing(tracing_metrics).trace_performance_metrics()
    assert tracing_metrics.error_rate() == 0.0
    assert _warnings(capture) == []
    assert capture.records[-1].getMessage().endswith("threads=4")

    tracing_metrics.cpu_usage = 81
    KafkaTracing(tracing_metrics).trace_performance_metrics()
    assert tracing_metrics.average_processing_latency() == 0.0
    warnings = _warnings(capture)
    assert len(warnings) == 1
    assert warnings[0].startswith("High CPU usage:")


def test_trace_error(capture):
    metrics = KafkaMetrics()
    KafkaTracing(metrics).trace_error(ValueError("boom"), "replay")
    assert metrics.error_rate() == 0.0
    record = capture.records[-1]
    assert record.levelno == logging.ERROR
    assert record.getMessage() == "Error in replay: boom"
    assert record.span_fields == {"context": "replay", "error": "boom"}


def test_custom_logger_is_used(caplog):
    custom = logging.getLogger("bankes.tests.custom")
    caplog.set_level(logging.INFO, logger="bankes.tests.custom")
    KafkaTracing(KafkaMetrics(), logger=custom).trace_dlq_operation(ACCOUNT, "send", 0)
    assert [r.name for r in caplog.records] == ["bankes.tests.custom"]