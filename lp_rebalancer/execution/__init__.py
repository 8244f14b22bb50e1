"""
Execution: quote aggregation, retries, transaction submission and the
zap-out / open-position operations.
"""

from lp_rebalancer.execution.quote_aggregator import QuoteAggregator
from lp_rebalancer.execution.retry_executor import EscalationPolicy, RetryExecutor

__all__ = ["QuoteAggregator", "EscalationPolicy", "RetryExecutor"]
