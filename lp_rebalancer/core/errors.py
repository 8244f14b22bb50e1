"""
Error taxonomy for the rebalancing engine.

Fatal errors are surfaced immediately and never retried. Transient errors are
retried by RetryExecutor up to its bound. Per-item failures inside a cycle are
converted into outcome records at the item boundary; only precondition errors
abort a cycle.
"""

from __future__ import annotations

from typing import Any, Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class FatalError(EngineError):
    """Error that must not be retried."""


class ConfigurationError(FatalError):
    """Malformed identifiers, non-finite or non-positive amounts, bad settings."""


class ParseError(FatalError):
    """An external response could not be decoded into a typed record."""

    def __init__(self, source: str, message: str, payload: Any = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.payload = payload


class NoRouteError(EngineError):
    """Every queried venue failed or returned a non-positive output."""

    def __init__(self, input_asset: str, output_asset: str, amount: int, errors: Optional[dict] = None) -> None:
        super().__init__(f"no route {input_asset} -> {output_asset} for amount {amount}")
        self.input_asset = input_asset
        self.output_asset = output_asset
        self.amount = amount
        self.errors = errors or {}


class TransientError(EngineError):
    """Timeout, network failure or slippage exceeded. Safe to retry."""


class SlippageExceededError(TransientError):
    """The venue rejected the swap because the minimum output was not met."""


class SubmissionError(TransientError):
    """A signed transaction was rejected or could not be confirmed."""

    def __init__(self, message: str, signature: Optional[str] = None) -> None:
        super().__init__(message)
        self.signature = signature


class RetryExhaustedError(EngineError):
    """Aggregate error raised after the final failed attempt."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class PreconditionError(EngineError):
    """Cycle inputs (positions, balances) could not be read at all."""


class CycleInProgressError(EngineError):
    """Another cycle already holds the wallet."""


class PhaseFailedError(EngineError):
    """A non-empty phase finished with zero successful items."""

    def __init__(self, phase: str, outcome: Any) -> None:
        super().__init__(f"{phase} phase: no item succeeded")
        self.phase = phase
        self.outcome = outcome
