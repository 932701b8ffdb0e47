"""Redis access behind a small async interface, with circuit breaking and load shedding."""

from __future__ import annotations

import abc
import asyncio
import contextlib
import enum
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

DEFAULT_URL = "redis://127.0.0.1/"

_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _decode(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


@dataclass
class RedisPoolConfig:
    min_connections: int = 50
    max_connections: int = 200
    connection_timeout: timedelta = timedelta(seconds=5)
    idle_timeout: timedelta = timedelta(seconds=300)


class RedisClient(abc.ABC):
    """The string-keyed operations the services need from Redis."""

    @property
    @abc.abstractmethod
    def pool_config(self) -> RedisPoolConfig:
        """Connection pool settings in effect for this client."""

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Value stored at key, or None."""

    @abc.abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value at key."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key."""

    @abc.abstractmethod
    async def set_ex(self, key: str, value: str, seconds: int) -> None:
        """Store value at key with an expiry in seconds."""

    @abc.abstractmethod
    async def set_nx_px(self, key: str, value: str, milliseconds: int) -> bool:
        """Store value only if key is absent, expiring after milliseconds."""

    @abc.abstractmethod
    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically remove key if it still holds value."""


class RedisPipeline:
    """Queues commands and sends them to Redis in one round trip."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    @property
    def commands(self) -> tuple[tuple[str, tuple[Any, ...]], ...]:
        return tuple(self._commands)

    def get(self, key: str | bytes) -> RedisPipeline:
        self._commands.append(("get", (key,)))
        return self

    def set_ex(self, key: str | bytes, value: str | bytes, seconds: int) -> RedisPipeline:
        self._commands.append(("setex", (key, seconds, value)))
        return self

    def delete(self, key: str | bytes) -> RedisPipeline:
        self._commands.append(("delete", (key,)))
        return self

    def rpush(self, key: str | bytes, values: list[str | bytes]) -> RedisPipeline:
        self._commands.append(("rpush", (key, *values)))
        return self

    async def execute(self) -> list[Any]:
        """Send every queued command and return their replies in order."""
        pipe = self._client.pipeline(transaction=False)
        for name, args in self._commands:
            getattr(pipe, name)(*args)
        return await pipe.execute()


class RealRedisClient(RedisClient):
    """RedisClient backed by a redis.asyncio connection pool."""

    def __init__(
        self,
        client: Any = None,
        pool_config: RedisPoolConfig | None = None,
        *,
        url: str = DEFAULT_URL,
    ) -> None:
        self._pool_config = pool_config or RedisPoolConfig()
        if client is None:
            client = aioredis.Redis.from_url(
                url,
                max_connections=self._pool_config.max_connections,
                socket_connect_timeout=self._pool_config.connection_timeout.total_seconds(),
            )
        self._client = client

    @property
    def pool_config(self) -> RedisPoolConfig:
        return self._pool_config

    async def get(self, key: str) -> str | None:
        return _decode(await self._client.get(key))

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def set_ex(self, key: str, value: str, seconds: int) -> None:
        await self._client.set(key, value, ex=seconds)

    async def set_nx_px(self, key: str, value: str, milliseconds: int) -> bool:
        return bool(await self._client.set(key, value, nx=True, px=milliseconds))

    async def delete_if_equals(self, key: str, value: str) -> bool:
        result = await self._client.eval(_RELEASE_IF_OWNER, 1, key, value)
        return int(result) == 1

    def pipeline(self) -> RedisPipeline:
        return RedisPipeline(self._client)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: timedelta = timedelta(seconds=30)
    half_open_timeout: timedelta = timedelta(seconds=5)


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(RedisError):
    """Raised when a call is refused because the circuit is open."""


class CircuitBreaker:
    """Opens after repeated failures and lets a trial request through after a pause."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._failure_count = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """Whether a request may go through now; an expired open circuit turns half-open."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                if self._clock() - self._opened_at >= self.config.reset_timeout.total_seconds():
                    self._state = CircuitState.HALF_OPEN
                    return True
                return False
            return True

    def record_success(self) -> None:
        """A successful trial request closes a half-open circuit."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._failure_count = 0

    def record_failure(self) -> None:
        """Count a failure and open the circuit once the threshold is reached."""
        with self._lock:
            self._failure_count += 1
            if self._failure_count >= self.config.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()


class CircuitBreakerRedisClient(RedisClient):
    """Guards another client with a circuit breaker."""

    def __init__(
        self,
        client: RedisClient,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._inner = client
        self.circuit_breaker = CircuitBreaker(config, clock)

    @property
    def pool_config(self) -> RedisPoolConfig:
        return self._inner.pool_config

    async def _guarded(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if not self.circuit_breaker.allow_request():
            raise CircuitBreakerOpenError("Circuit breaker is open")
        try:
            result = await operation(*args)
        except (RedisError, OSError):
            self.circuit_breaker.record_failure()
            raise
        self.circuit_breaker.record_success()
        return result

    async def get(self, key: str) -> str | None:
        return await self._guarded(self._inner.get, key)

    async def set(self, key: str, value: str) -> None:
        await self._guarded(self._inner.set, key, value)

    async def delete(self, key: str) -> None:
        await self._guarded(self._inner.delete, key)

    async def set_ex(self, key: str, value: str, seconds: int) -> None:
        await self._guarded(self._inner.set_ex, key, value, seconds)

    async def set_nx_px(self, key: str, value: str, milliseconds: int) -> bool:
        return await self._guarded(self._inner.set_nx_px, key, value, milliseconds)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        return await self._guarded(self._inner.delete_if_equals, key, value)


@dataclass
class LoadShedderConfig:
    max_concurrent_requests: int = 2000
    max_queue_size: int = 10000
    queue_timeout: timedelta = timedelta(milliseconds=50)
    cpu_threshold: float = 0.8
    memory_threshold: float = 0.8


@dataclass(frozen=True)
class LoadShedderMetrics:
    current_load: int
    rejected_requests: int
    max_concurrent_requests: int
    max_queue_size: int


class LoadShedError(RedisError):
    """Raised when a request is rejected to protect the system."""


class LoadShedder:
    """Limits concurrent requests and rejects work when the system is overloaded.

    CPU and memory usage come from optional probes returning a fraction in
    [0, 1]; without probes only the concurrency limit applies.
    """

    def __init__(
        self,
        config: LoadShedderConfig | None = None,
        cpu_probe: Callable[[], float] | None = None,
        memory_probe: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or LoadShedderConfig()
        self._cpu_probe = cpu_probe
        self._memory_probe = memory_probe
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self._current_load = 0
        self._rejected_requests = 0

    def _is_system_overloaded(self) -> bool:
        cpu = self._cpu_probe() if self._cpu_probe else 0.0
        memory = self._memory_probe() if self._memory_probe else 0.0
        return cpu > self.config.cpu_threshold or memory > self.config.memory_threshold

    @contextlib.asynccontextmanager
    async def acquire_permit(self) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of the block."""
        if self._is_system_overloaded():
            self._rejected_requests += 1
            raise LoadShedError("System is overloaded")
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(), self.config.queue_timeout.total_seconds()
            )
        except asyncio.TimeoutError:
            self._rejected_requests += 1
            raise LoadShedError("Request queue is full") from None
        self._current_load += 1
        try:
            yield
        finally:
            self._current_load -= 1
            self._semaphore.release()

    def metrics(self) -> LoadShedderMetrics:
        return LoadShedderMetrics(
            current_load=self._current_load,
            rejected_requests=self._rejected_requests,
            max_concurrent_requests=self.config.max_concurrent_requests,
            max_queue_size=self.config.max_queue_size,
        )


class LoadSheddingRedisClient(RedisClient):
    """Runs every call of another client under a load shedder permit."""

    def __init__(
        self,
        client: RedisClient,
        config: LoadShedderConfig | None = None,
        cpu_probe: Callable[[], float] | None = None,
        memory_probe: Callable[[], float] | None = None,
    ) -> None:
        self._inner = client
        self.load_shedder = LoadShedder(config, cpu_probe, memory_probe)

    @property
    def pool_config(self) -> RedisPoolConfig:
        return self._inner.pool_config

    def metrics(self) -> LoadShedderMetrics:
        return self.load_shedder.metrics()

    async def get(self, key: str) -> str | None:
        async with self.load_shedder.acquire_permit():
            return await self._inner.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self.load_shedder.acquire_permit():
            await self._inner.set(key, value)

    async def delete(self, key: str) -> None:
        async with self.load_shedder.acquire_permit():
            await self._inner.delete(key)

    async def set_ex(self, key: str, value: str, seconds: int) -> None:
        async with self.load_shedder.acquire_permit():
            await self._inner.set_ex(key, value, seconds)

    async def set_nx_px(self, key: str, value: str, milliseconds: int) -> bool:
        async with self.load_shedder.acquire_permit():
            return await self._inner.set_nx_px(key, value, milliseconds)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        async with self.load_shedder.acquire_permit():
            return await self._inner.delete_if_equals(key, value)