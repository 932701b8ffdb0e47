from datetime import datetime, timedelta, timezone

from bankes.metrics import KafkaMetrics
from bankes.monitoring import AlertSeverity, MonitoringDashboard, ServiceStatus


class _Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_new_dashboard_is_healthy_and_empty():
    dashboard = MonitoringDashboard(KafkaMetrics())
    assert dashboard.health_status.status is ServiceStatus.HEALTHY
    assert dashboard.alerts == []
    assert dashboard.time_series_data == []


def test_summary_without_data_is_zero():
    metrics = KafkaMetrics(events_processed=7, processing_errors=2, dlq_messages=3)
    summary = MonitoringDashboard(metrics).metrics_summary()
    assert summary.current_error_rate == 0.0
    assert summary.current_consumer_lag == 0
    assert summary.total_events_processed == 7
    assert summary.total_errors == 2
    assert summary.dlq_size == 3
    assert summary.active_alerts == 0


def test_record_metrics_snapshot_matches_metrics():
    metrics = KafkaMetrics(consumer_lag=42, memory_usage=500, cpu_usage=12, dlq_messages=4)
    dashboard = MonitoringDashboard(metrics, clock=_Clock(START))
    dashboard.record_metrics()
    assert len(dashboard.time_series_data) == 1
    point = dashboard.time_series_data[0]
    assert point.timestamp == START
    assert point.metrics.consumer_lag == 42
    assert point.metrics.dlq_size == 4
    summary = dashboard.metrics_summary()
    assert summary.current_consumer_lag == 42
    assert summary.current_memory_usage == 500
    assert summary.current_cpu_usage == 12


def test_record_metrics_drops_points_older_than_a_day():
    clock = _Clock(START)
    dashboard = MonitoringDashboard(KafkaMetrics(), clock=clock)
    dashboard.record_metrics()
    clock.now = START + timedelta(hours=25)
    dashboard.record_metrics()
    assert [p.timestamp for p in dashboard.time_series_data] == [clock.now]


def test_points_within_a_day_are_kept():
    clock = _Clock(START)
    dashboard = MonitoringDashboard(KafkaMetrics(), clock=clock)
    dashboard.record_metrics()
    clock.now = START + timedelta(hours=23)
    dashboard.record_metrics()
    assert len(dashboard.time_series_data) == 2


def test_high_error_rate_raises_critical_alert():
    metrics = KafkaMetrics(messages_sent=10, send_errors=5)
    dashboard = MonitoringDashboard(metrics)
    dashboard.check_alerts()
    assert len(dashboard.alerts) == 1
    alert = dashboard.alerts[0]
    assert alert.severity is AlertSeverity.CRITICAL
    assert alert.metric_name == "error_rate"
    assert alert.threshold == 0.1
    assert alert.current_value == metrics.error_rate()
    assert alert.message == "High error rate: 50.00%"


def test_consumer_lag_alert_and_boundary():
    metrics = KafkaMetrics(consumer_lag=1000)
    dashboard = MonitoringDashboard(metrics)
    dashboard.check_alerts()
    assert dashboard.alerts == []

    metrics.consumer_lag = 1500
    dashboard.check_alerts()
    assert len(dashboard.alerts) == 1
    alert = dashboard.alerts[0]
    assert alert.severity is AlertSeverity.WARNING
    assert alert.metric_name == "consumer_lag"
    assert alert.message == "High consumer lag: 1500"
    assert alert.current_value == 1500.0


def test_memory_usage_alert():
    metrics = KafkaMetrics(memory_usage=2_000_000_000)
    dashboard = MonitoringDashboard(metrics)
    dashboard.check_alerts()
    assert [a.metric_name for a in dashboard.alerts] == ["memory_usage"]
    assert dashboard.alerts[0].message == "High memory usage: 2.00GB"
    assert dashboard.alerts[0].threshold == 1_000_000_000.0


def test_alerts_are_counted_in_summary():
    metrics = KafkaMetrics(consumer_lag=5000, memory_usage=3_000_000_000)
    dashboard = MonitoringDashboard(metrics)
    dashboard.check_alerts()
    assert dashboard.metrics_summary().active_alerts == len(dashboard.alerts) == 2


def test_health_status_healthy_components():
    dashboard = MonitoringDashboard(KafkaMetrics(send_errors=100, dlq_messages=1000))
    dashboard.update_health_status()
    status = dashboard.health_status
    assert status.status is ServiceStatus.HEALTHY
    assert [c.name for c in status.components] == [
        "Kafka Producer",
        "Kafka Consumer",
        "Dead Letter Queue",
    ]
    assert all(c.status is ServiceStatus.HEALTHY for c in status.components)


def test_health_status_degraded_by_producer_errors():
    dashboard = MonitoringDashboard(KafkaMetrics(send_errors=101))
    dashboard.update_health_status()
    producer = dashboard.health_status.components[0]
    assert producer.status is ServiceStatus.DEGRADED
    assert producer.details == "Send errors: 101"
    assert dashboard.health_status.status is ServiceStatus.DEGRADED
    assert dashboard.metrics_summary().health_status is ServiceStatus.DEGRADED


def test_health_status_degraded_by_dlq_size():
    dashboard = MonitoringDashboard(KafkaMetrics(dlq_messages=1001))
    dashboard.update_health_status()
    dlq = dashboard.health_status.components[2]
    assert dlq.status is ServiceStatus.DEGRADED
    assert dlq.details == "DLQ size: 1001"
    assert dashboard.health_status.status is ServiceStatus.DEGRADED


def test_health_status_records_check_time():
    clock = _Clock(START)
    dashboard = MonitoringDashboard(KafkaMetrics(), clock=clock)
    clock.now = START + timedelta(minutes=5)
    dashboard.update_health_status()
    assert dashboard.health_status.last_check == clock.now