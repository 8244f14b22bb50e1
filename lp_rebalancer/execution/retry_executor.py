"""
RetryExecutor: re-run a failing on-chain operation with escalating risk.

The operation is an async callable taking RetryParams. It must re-fetch
quotes, pool state and the freshness token on every invocation, so each
attempt acts on current data.

Error policy:
- FatalError (ConfigurationError, ParseError) and NoRouteError surface at once
- TransientError and unexpected exceptions are retried after a fixed delay
- after ``max_attempts`` failures RetryExhaustedError carries the last cause
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from lp_rebalancer.core.errors import (
    ConfigurationError,
    FatalError,
    NoRouteError,
    RetryExhaustedError,
)
from lp_rebalancer.core.models import RetryParams
from lp_rebalancer.infra.logging_cfg import log_event

Escalation = Callable[[int], RetryParams]
Operation = Callable[[RetryParams], Awaitable[Any]]


@dataclass(frozen=True)
class EscalationPolicy:
    """
    Linear escalation with caps.

    attempt k (1-based):
        slippage_bps     = min(base + (k-1) * step, max)
        resource_ceiling = min(base + (k-1) * step, max)
        amount_factor    = max(1 - (k-1) * step, min_factor)

    A zero step disables that dimension.
    """
    base_slippage_bps: int = 50
    slippage_step_bps: int = 200
    max_slippage_bps: int = 1000
    base_resource_ceiling: int = 20
    resource_ceiling_step: int = 5
    max_resource_ceiling: int = 40
    amount_reduction_step: float = 0.01
    min_amount_factor: float = 0.9

    def __post_init__(self) -> None:
        if self.base_slippage_bps < 0 or self.slippage_step_bps < 0:
            raise ConfigurationError("slippage base and step must be >= 0")
        if self.base_slippage_bps > self.max_slippage_bps or self.max_slippage_bps > 10_000:
            raise ConfigurationError("slippage base must be <= cap <= 10000 bps")
        if self.base_resource_ceiling <= 0 or self.resource_ceiling_step < 0:
            raise ConfigurationError("resource ceiling base must be > 0 and step >= 0")
        if self.base_resource_ceiling > self.max_resource_ceiling:
            raise ConfigurationError("resource ceiling base must be <= cap")
        if self.amount_reduction_step < 0:
            raise ConfigurationError("amount reduction step must be >= 0")
        if not 0 < self.min_amount_factor <= 1:
            raise ConfigurationError("min amount factor must be in (0, 1]")

    def __call__(self, attempt: int) -> RetryParams:
        if attempt < 1:
            raise ConfigurationError(f"attempt must be >= 1, got {attempt}")
        k = attempt - 1
        return RetryParams(
            attempt=attempt,
            slippage_bps=min(self.base_slippage_bps + k * self.slippage_step_bps, self.max_slippage_bps),
            resource_ceiling=min(self.base_resource_ceiling + k * self.resource_ceiling_step, self.max_resource_ceiling),
            amount_factor=max(1.0 - k * self.amount_reduction_step, self.min_amount_factor),
        )

    @classmethod
    def from_settings(cls, cfg) -> "EscalationPolicy":
        return cls(
            base_slippage_bps=cfg.base_slippage_bps,
            slippage_step_bps=cfg.slippage_step_bps,
            max_slippage_bps=cfg.max_slippage_bps,
            base_resource_ceiling=cfg.base_resource_ceiling,
            resource_ceiling_step=cfg.resource_ceiling_step,
            max_resource_ceiling=cfg.max_resource_ceiling,
            amount_reduction_step=cfg.amount_reduction_step,
            min_amount_factor=cfg.min_amount_factor,
        )


def _check_monotone(prev: Optional[RetryParams], cur: RetryParams) -> None:
    if prev is None:
        return
    if (
        cur.slippage_bps < prev.slippage_bps
        or cur.resource_ceiling < prev.resource_ceiling
        or cur.amount_factor > prev.amount_factor
    ):
        raise ConfigurationError(f"escalation is not monotone at attempt {cur.attempt}: {prev} -> {cur}")


class RetryExecutor:
    def __init__(
        self,
        escalation: Optional[Escalation] = None,
        max_attempts: int = 3,
        delay: float = 2.0,
        logger: Optional[logging.Logger] = None,
        metrics: Any = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ConfigurationError("max_attempts must be > 0")
        self.escalation: Escalation = escalation or EscalationPolicy()
        self.max_attempts = max_attempts
        self.delay = delay
        self.log = logger or logging.getLogger("lprebal")
        self.metrics = metrics
        self._sleep = sleep

    async def run(
        self,
        operation: Operation,
        *,
        label: str = "operation",
        escalation: Optional[Escalation] = None,
        max_attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> Any:
        escalate = escalation or self.escalation
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        wait = self.delay if delay is None else delay
        if attempts <= 0:
            raise ConfigurationError("max_attempts must be > 0")

        prev: Optional[RetryParams] = None
        for attempt in range(1, attempts + 1):
            params = escalate(attempt)
            _check_monotone(prev, params)
            prev = params
            try:
                return await operation(params)
            except (FatalError, NoRouteError) as exc:
                log_event(
                    self.log, "retry_abort", level=logging.ERROR,
                    label=label, attempt=attempt, error_type=type(exc).__name__, error=str(exc),
                )
                raise
            except Exception as exc:
                if self.metrics is not None:
                    self.metrics.retry_attempts.labels(label=label.split(":")[0], error_type=type(exc).__name__).inc()
                final = attempt >= attempts
                log_event(
                    self.log, "retry_attempt_failed", level=logging.ERROR if final else logging.WARNING,
                    label=label,
                    attempt=attempt,
                    max_attempts=attempts,
                    slippage_bps=params.slippage_bps,
                    resource_ceiling=params.resource_ceiling,
                    amount_factor=params.amount_factor,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                if final:
                    raise RetryExhaustedError(label, attempts, exc) from exc
                await self._sleep(wait)
