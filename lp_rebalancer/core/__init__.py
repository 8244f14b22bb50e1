"""
Core records, errors and helpers shared by every layer.
"""

from lp_rebalancer.core.context import ExecutionContext
from lp_rebalancer.core.errors import (
    ConfigurationError,
    CycleInProgressError,
    EngineError,
    FatalError,
    NoRouteError,
    ParseError,
    PhaseFailedError,
    PreconditionError,
    RetryExhaustedError,
    SlippageExceededError,
    SubmissionError,
    TransientError,
)

__all__ = [
    "ExecutionContext",
    "ConfigurationError",
    "CycleInProgressError",
    "EngineError",
    "FatalError",
    "NoRouteError",
    "ParseError",
    "PhaseFailedError",
    "PreconditionError",
    "RetryExhaustedError",
    "SlippageExceededError",
    "SubmissionError",
    "TransientError",
]
