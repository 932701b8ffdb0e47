# bankes

Infrastructure components for an event-sourced banking service, for use from
asyncio applications.

## Modules

- `bankes.metrics`: `KafkaMetrics`, a dataclass of counters for the producer,
  the consumer, event processing, the dead letter queue and the system.
  `record_send_latency`, `record_consume_latency` and
  `record_processing_latency` add a duration (a `timedelta` or a number of
  seconds) in whole milliseconds; `average_send_latency`,
  `average_consume_latency`, `average_processing_latency`, `error_rate` and
  `dlq_retry_success_rate` return ratios, or `0.0` when nothing was counted.
- `bankes.monitoring`: `MonitoringDashboard` wraps a `KafkaMetrics`.
  `record_metrics` appends a `MetricsSnapshot` and keeps the last 24 hours;
  `check_alerts` adds `Alert`s for an error rate above 10 %, a consumer lag
  above 1000 and memory usage above 1 GB; `update_health_status` marks the
  producer, consumer and dead letter queue components `HEALTHY` or
  `DEGRADED`; `metrics_summary` returns a `MetricsSummary`. A clock can be
  passed in for testing.
- `bankes.event_tracing`: `KafkaTracing` writes log records through the
  standard `logging` module for DLQ operations, recovery operations, metric
  snapshots, performance metrics and errors, with warnings when thresholds
  are crossed. Each record carries `span` and `span_fields` extras.
- `bankes.middleware`: `RequestMiddleware` checks a per-client request count
  within a fixed window (`RateLimiter`, configured by `RateLimitConfig`) and
  then runs the `RequestValidationRule` registered for the request type.
  `AccountCreationValidator` requires a non-empty `owner_name` and a
  non-negative `initial_balance`; `TransactionValidator` requires a UUID
  `account_id` and a positive `amount`. Results come back as
  `ValidationResult`.
- `bankes.rate_limiter`: a sliding-window `RateLimiter` keyed by string, with
  `record_request` and `is_rate_limited`.
- `bankes.redis_client`: the abstract `RedisClient` interface (`get`, `set`,
  `delete`, `set_ex`, `set_nx_px`, `delete_if_equals`) and
  `RealRedisClient`, built on `redis.asyncio`, which also offers
  `pipeline()` returning a `RedisPipeline`. `CircuitBreakerRedisClient`
  wraps a client with a `CircuitBreaker` and raises
  `CircuitBreakerOpenError` while open; `LoadSheddingRedisClient` runs every
  call under a `LoadShedder` permit and raises `LoadShedError` when the
  concurrency limit or optional CPU/memory probes reject the call.
- `bankes.scaling`: `ScalingManager` stores `ServiceInstance`s in Redis with
  a 60-second expiry, updates their `InstanceMetrics`, decides in
  `check_and_scale` whether average CPU or memory calls for scaling up or
  down, and drops instances whose heartbeat is too old in
  `cleanup_failed_instances`. `start_scaling_manager` runs the check in a
  background task.
- `bankes.sharding`: `ShardManager` splits the 64-bit hash space into shards
  (`ShardInfo`), finds the shard for a key, assigns shards to instances and
  rebalances them, each under a Redis lock from `LockManager`. A
  `DistributedLock` can be used as an async context manager; a lock that
  stays held through every retry raises `LockAcquisitionError`.

## Installation

```
pip install .
```

The Redis-backed components need a reachable Redis server.

## Examples

```python
from bankes.metrics import KafkaMetrics
from bankes.monitoring import MonitoringDashboard

metrics = KafkaMetrics(messages_sent=10, send_errors=2)
dashboard = MonitoringDashboard(metrics)
dashboard.record_metrics()
dashboard.check_alerts()
dashboard.update_health_status()
print(dashboard.metrics_summary())
```

```python
import asyncio
from bankes.middleware import (
    AccountCreationValidator,
    RequestContext,
    RequestMiddleware,
)

async def main():
    middleware = RequestMiddleware()
    middleware.register_validator("create_account", AccountCreationValidator())
    context = RequestContext(
        client_id="client-1",
        request_type="create_account",
        payload={"owner_name": "Alice", "initial_balance": 100.0},
    )
    result = await middleware.process_request(context)
    print(result.is_valid, result.errors)

asyncio.run(main())
```

```python
import asyncio
from bankes.redis_client import CircuitBreakerRedisClient, RealRedisClient
from bankes.sharding import ShardManager

async def main():
    client = CircuitBreakerRedisClient(RealRedisClient(url="redis://localhost:6379/"))
    shards = ShardManager(client)
    shards.initialize_shards()
    await shards.assign_shard("shard-0", "instance-1")
    print(shards.shard_for_key("account-42"))

asyncio.run(main())
```

## What the package does not do

- It has no command and no HTTP server; the components are meant to be used
  from an application.
- It keeps no accounts, events or projections and does not talk to a
  message broker; `KafkaMetrics` only counts what the application reports.
- Scaling decisions are recorded in `ScalingManager.scale_events` and
  logged; no instances are started or stopped.

## Running the tests

```
pip install .[test]
pytest
```