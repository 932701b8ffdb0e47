from datetime import timedelta

import pytest

from bankes.metrics import KafkaMetrics


def test_fresh_metrics_have_zero_rates():
    metrics = KafkaMetrics()
    assert metrics.average_send_latency() == 0.0
    assert metrics.average_consume_latency() == 0.0
    assert metrics.average_processing_latency() == 0.0
    assert metrics.error_rate() == 0.0
    assert metrics.dlq_retry_success_rate() == 0.0


def test_record_send_latency_accumulates_milliseconds():
    metrics = KafkaMetrics()
    metrics.record_send_latency(timedelta(milliseconds=25))
    metrics.record_send_latency(timedelta(milliseconds=15))
    assert metrics.send_latency == 25 + 15


def test_latency_is_truncated_to_whole_milliseconds():
    metrics = KafkaMetrics()
    metrics.record_consume_latency(timedelta(microseconds=999))
    assert metrics.consume_latency == 0


def test_latency_accepts_seconds_as_number():
    metrics = KafkaMetrics()
    metrics.record_processing_latency(0.25)
    assert metrics.processing_latency == timedelta(seconds=0.25) // timedelta(milliseconds=1)


@pytest.mark.parametrize(
    "record, total, count, average",
    [
        ("record_send_latency", "send_latency", "messages_sent", "average_send_latency"),
        ("record_consume_latency", "consume_latency", "messages_consumed", "average_consume_latency"),
        (
            "record_processing_latency",
            "processing_latency",
            "events_processed",
            "average_processing_latency",
        ),
    ],
)
def test_average_times_count_gives_total(record, total, count, average):
    metrics = KafkaMetrics()
    getattr(metrics, record)(timedelta(milliseconds=30))
    getattr(metrics, record)(timedelta(milliseconds=12))
    setattr(metrics, count, 3)
    assert getattr(metrics, average)() * 3 == pytest.approx(getattr(metrics, total))


def test_error_rate_is_one_when_everything_failed():
    metrics = KafkaMetrics(
        messages_sent=2, send_errors=2, messages_consumed=3, consume_errors=3
    )
    assert metrics.error_rate() == 1.0


def test_error_rate_counts_all_kinds_of_errors():
    metrics = KafkaMetrics(
        messages_sent=4, send_errors=1, events_processed=4, processing_errors=0
    )
    assert metrics.error_rate() == 0.125


def test_error_rate_stays_between_zero_and_one():
    metrics = KafkaMetrics(
        messages_sent=10,
        messages_consumed=7,
        events_processed=5,
        send_errors=1,
        consume_errors=2,
        processing_errors=3,
    )
    assert 0.0 < metrics.error_rate() < 1.0


def test_dlq_retry_success_rate():
    metrics = KafkaMetrics(dlq_retries=4, dlq_retry_success=4)
    assert metrics.dlq_retry_success_rate() == 1.0
    metrics.dlq_retries = 8
    assert metrics.dlq_retry_success_rate() == 0.5