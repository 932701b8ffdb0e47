"""Per-client rate limiting and payload validation for incoming requests."""

from __future__ import annotations

import abc
import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

_logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    requests_per_minute: int = 60
    burst_size: int = 10
    window_size: timedelta = timedelta(seconds=60)
    max_clients: int = 10000


@dataclass
class _RateLimitInfo:
    requests: int
    window_start: float
    semaphore: asyncio.Semaphore


class RateLimiter:
    """Counts requests per client within a fixed window, with burst control."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock or time.monotonic
        self._limits: dict[str, _RateLimitInfo] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._limits)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._limits

    async def check_rate_limit(self, client_id: str) -> bool:
        """Return True and count the request if the client is within its limits."""
        now = self._clock()
        window = self.config.window_size.total_seconds()
        with self._lock:
            info = self._limits.get(client_id)
            if info is None:
                info = _RateLimitInfo(
                    requests=0,
                    window_start=now,
                    semaphore=asyncio.Semaphore(self.config.burst_size),
                )
                self._limits[client_id] = info

            if now - info.window_start >= window:
                info.requests = 0
                info.window_start = now

            if info.requests >= self.config.requests_per_minute:
                _logger.warning("Rate limit exceeded for client %s", client_id)
                return False

            if info.semaphore.locked():
                _logger.warning("Burst limit exceeded for client %s", client_id)
                return False

            info.requests += 1
            return True

    def cleanup_expired_limits(self) -> None:
        """Forget clients whose current window has run out."""
        now = self._clock()
        window = self.config.window_size.total_seconds()
        with self._lock:
            self._limits = {
                client_id: info
                for client_id, info in self._limits.items()
                if now - info.window_start < window
            }


@dataclass
class RequestContext:
    client_id: str
    request_type: str
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


class RequestValidationRule(abc.ABC):
    """A check applied to requests of one type."""

    @abc.abstractmethod
    async def validate(self, context: RequestContext) -> ValidationResult:
        """Check the request and report errors and warnings."""


class RequestValidator:
    """Dispatches requests to the rule registered for their type."""

    def __init__(self) -> None:
        self._validators: dict[str, RequestValidationRule] = {}

    def register_validator(
        self, request_type: str, validator: RequestValidationRule
    ) -> None:
        self._validators[request_type] = validator

    async def validate_request(self, context: RequestContext) -> ValidationResult:
        """Validate with the registered rule; requests without one are valid."""
        result = ValidationResult()
        validator = self._validators.get(context.request_type)
        if validator is not None:
            validation = await validator.validate(context)
            result.is_valid = result.is_valid and validation.is_valid
            result.errors.extend(validation.errors)
            result.warnings.extend(validation.warnings)
        return result


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _is_uuid(text: str) -> bool:
    try:
        uuid.UUID(text)
    except ValueError:
        return False
    return True


class AccountCreationValidator(RequestValidationRule):
    """Requires a non-empty owner_name and a non-negative initial_balance."""

    async def validate(self, context: RequestContext) -> ValidationResult:
        result = ValidationResult()
        payload = context.payload
        if not isinstance(payload, dict):
            result.fail("Payload must be a JSON object")
            return result

        if "owner_name" not in payload:
            result.fail("owner_name is required")
        elif isinstance(payload["owner_name"], str) and not payload["owner_name"]:
            result.fail("owner_name cannot be empty")

        if "initial_balance" not in payload:
            result.fail("initial_balance is required")
        else:
            balance = _as_number(payload["initial_balance"])
            if balance is not None and balance < 0.0:
                result.fail("initial_balance cannot be negative")

        return result


class TransactionValidator(RequestValidationRule):
    """Requires a UUID account_id and a positive amount."""

    async def validate(self, context: RequestContext) -> ValidationResult:
        result = ValidationResult()
        payload = context.payload
        if not isinstance(payload, dict):
            result.fail("Payload must be a JSON object")
            return result

        if "account_id" not in payload:
            result.fail("account_id is required")
        elif isinstance(payload["account_id"], str) and not _is_uuid(payload["account_id"]):
            result.fail("account_id must be a valid UUID")

        if "amount" not in payload:
            result.fail("amount is required")
        else:
            amount = _as_number(payload["amount"])
            if amount is not None and amount <= 0.0:
                result.fail("amount must be greater than zero")

        return result


class RequestMiddleware:
    """Applies the rate limit, then the validator registered for the request type."""

    def __init__(
        self,
        rate_limit_config: RateLimitConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.rate_limiter = RateLimiter(rate_limit_config or RateLimitConfig(), clock)
        self.request_validator = RequestValidator()

    async def process_request(self, context: RequestContext) -> ValidationResult:
        if not await self.rate_limiter.check_rate_limit(context.client_id):
            return ValidationResult(is_valid=False, errors=["Rate limit exceeded"])
        return await self.request_validator.validate_request(context)

    def register_validator(
        self, request_type: str, validator: RequestValidationRule
    ) -> None:
        self.request_validator.register_validator(request_type, validator)