"""Registry of service instances with threshold-based scaling decisions."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from .redis_client import RedisClient

_logger = logging.getLogger(__name__)

INSTANCE_TTL_SECONDS = 60
SCALE_UP = "scale_up"
SCALE_DOWN = "scale_down"

_TIMESTAMP = re.compile(r"^(?P<base>[^.]*?)(?P<frac>\.\d+)?(?P<tz>Z|[+-]\d\d:\d\d)?$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(text: str) -> datetime:
    match = _TIMESTAMP.match(text)
    if match is None:
        raise ValueError(f"Invalid timestamp: {text!r}")
    frac = (match.group("frac") or "")[:7]
    tz = match.group("tz") or "+00:00"
    if tz == "Z":
        tz = "+00:00"
    return datetime.fromisoformat(match.group("base") + frac + tz)


class InstanceStatus(enum.Enum):
    ACTIVE = "Active"
    STARTING = "Starting"
    STOPPING = "Stopping"
    FAILED = "Failed"


@dataclass
class InstanceMetrics:
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    request_count: int = 0
    error_count: int = 0
    latency_ms: int = 0


@dataclass
class ServiceInstance:
    id: str
    host: str
    port: int
    status: InstanceStatus
    metrics: InstanceMetrics = field(default_factory=InstanceMetrics)
    shard_assignments: list[int] = field(default_factory=list)
    last_heartbeat: datetime = field(default_factory=_utcnow)

    def to_json(self) -> str:
        """Serialise the instance as a JSON document."""
        return json.dumps(
            {
                "id": self.id,
                "host": self.host,
                "port": self.port,
                "status": self.status.value,
                "metrics": asdict(self.metrics),
                "shard_assignments": list(self.shard_assignments),
                "last_heartbeat": _format_timestamp(self.last_heartbeat),
            }
        )

    @classmethod
    def from_json(cls, text: str) -> ServiceInstance:
        """Build an instance from a document produced by to_json."""
        data = json.loads(text)
        try:
            metrics = data["metrics"]
            return cls(
                id=data["id"],
                host=data["host"],
                port=int(data["port"]),
                status=InstanceStatus(data["status"]),
                metrics=InstanceMetrics(
                    cpu_usage=float(metrics["cpu_usage"]),
                    memory_usage=float(metrics["memory_usage"]),
                    request_count=int(metrics["request_count"]),
                    error_count=int(metrics["error_count"]),
                    latency_ms=int(metrics["latency_ms"]),
                ),
                shard_assignments=[int(s) for s in data["shard_assignments"]],
                last_heartbeat=_parse_timestamp(data["last_heartbeat"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid service instance document: {exc}") from exc


@dataclass
class ScalingConfig:
    min_instances: int = 2
    max_instances: int = 10
    scale_up_threshold: float = 0.8
    scale_down_threshold: float = 0.3
    cooldown_period: timedelta = timedelta(seconds=300)
    health_check_interval: timedelta = timedelta(seconds=30)
    instance_timeout: timedelta = timedelta(seconds=60)


class ScalingManager:
    """Tracks instances in Redis and decides when to scale up or down."""

    def __init__(
        self,
        redis_client: RedisClient,
        config: ScalingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.redis_client = redis_client
        self.config = config or ScalingConfig()
        self._clock = clock or _utcnow
        self.instances: dict[str, ServiceInstance] = {}
        self._last_scale_time = self._clock()
        self.scale_events: list[tuple[datetime, str]] = []

    @property
    def last_scale_time(self) -> datetime:
        return self._last_scale_time

    async def register_instance(self, instance: ServiceInstance) -> None:
        """Store the instance in Redis with a TTL and remember it locally."""
        await self.redis_client.set_ex(
            f"instance:{instance.id}", instance.to_json(), INSTANCE_TTL_SECONDS
        )
        self.instances[instance.id] = instance
        _logger.info("Registered new instance: %s", instance.id)

    async def update_instance_metrics(
        self, instance_id: str, metrics: InstanceMetrics
    ) -> None:
        """Replace a known instance's metrics and refresh its heartbeat; unknown ids are ignored."""
        instance = self.instances.get(instance_id)
        if instance is None:
            return
        instance.metrics = metrics
        instance.last_heartbeat = self._clock()
        await self.redis_client.set_ex(
            f"instance:{instance_id}", instance.to_json(), INSTANCE_TTL_SECONDS
        )

    async def start_scaling_manager(self) -> asyncio.Task[None]:
        """Run scaling checks in the background every health-check interval."""
        return asyncio.create_task(self._scaling_loop())

    async def _scaling_loop(self) -> None:
        while True:
            try:
                self.check_and_scale()
            except Exception:
                _logger.exception("Scaling check failed")
            await asyncio.sleep(self.config.health_check_interval.total_seconds())

    def check_and_scale(self) -> str | None:
        """Scale up or down if averages cross thresholds; return the action taken."""
        now = self._clock()
        if now - self._last_scale_time < self.config.cooldown_period:
            return None

        active = [
            i for i in self.instances.values() if i.status is InstanceStatus.ACTIVE
        ]
        if not active:
            return None
        avg_cpu = sum(i.metrics.cpu_usage for i in active) / len(active)
        avg_memory = sum(i.metrics.memory_usage for i in active) / len(active)

        up = self.config.scale_up_threshold
        down = self.config.scale_down_threshold
        if avg_cpu > up or avg_memory > up:
            if len(active) < self.config.max_instances:
                self._scale_up(now)
                self._last_scale_time = now
                return SCALE_UP
        elif avg_cpu < down and avg_memory < down:
            if len(active) > self.config.min_instances:
                self._scale_down(now)
                self._last_scale_time = now
                return SCALE_DOWN
        return None

    def _scale_up(self, now: datetime) -> None:
        self.scale_events.append((now, SCALE_UP))
        _logger.info("Scaling up: Creating new instance")

    def _scale_down(self, now: datetime) -> str:
        victim = next(
            (i for i in self.instances.values() if i.status is InstanceStatus.ACTIVE),
            None,
        )
        if victim is None:
            raise RuntimeError("No active instance found to scale down")
        self.scale_events.append((now, SCALE_DOWN))
        _logger.info("Scaling down: Removing instance %s", victim.id)
        return victim.id

    def cleanup_failed_instances(self) -> list[str]:
        """Forget instances whose heartbeat is older than the timeout; return their ids."""
        now = self._clock()
        failed = [
            instance_id
            for instance_id, instance in self.instances.items()
            if now - instance.last_heartbeat > self.config.instance_timeout
        ]
        for instance_id in failed:
            del self.instances[instance_id]
            _logger.warning("Removing failed instance: %s", instance_id)
        return failed