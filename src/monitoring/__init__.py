"""
Monitoring Module for Feed Reconciliation

Observability components for reconciliation runs:
- Custom Prometheus metrics
- Alert rule definitions

Usage:
    from src.monitoring import FeedMetrics, AlertRuleGenerator

    metrics = FeedMetrics()
    metrics.record_event("infura/websocket/eth_subscribe", "new")

    alerts = AlertRuleGenerator()
    rules = alerts.generate_alert_rules()
"""

from src.monitoring.metrics import FeedMetrics, IngestionMetrics, ReconciliationMetrics
from src.monitoring.alerts import AlertRuleGenerator

__all__ = [
    "FeedMetrics",
    "IngestionMetrics",
    "ReconciliationMetrics",
    "AlertRuleGenerator",
]

__version__ = "1.0.0"
