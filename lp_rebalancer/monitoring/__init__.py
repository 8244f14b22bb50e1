"""
Monitoring and observability package.

This package contains the notification channel and Prometheus metrics.
"""

from lp_rebalancer.monitoring.alerting import NotifyConfig, Notifier, NotifySeverity, format_cycle_summary
from lp_rebalancer.monitoring.metrics import EngineMetrics

__all__ = [
    "NotifyConfig",
    "Notifier",
    "NotifySeverity",
    "format_cycle_summary",
    "EngineMetrics",
]
