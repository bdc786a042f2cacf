"""
Alert Rule Generator for Prometheus AlertManager

Generates alert rule definitions for feed reconciliation monitoring.
Rules cover feed ingestion, transport health and reconciliation verdicts.
"""

import logging
from typing import Dict, List, Any
import yaml

logger = logging.getLogger(__name__)


def _rule(
    name: str,
    expr: str,
    duration: str,
    severity: str,
    component: str,
    summary: str,
    description: str
) -> Dict[str, Any]:
    return {
        "alert": name,
        "expr": expr,
        "for": duration,
        "labels": {
            "severity": severity,
            "component": component
        },
        "annotations": {
            "summary": summary,
            "description": description
        }
    }


class AlertRuleGenerator:
    """Generates Prometheus AlertManager alert rules."""

    def __init__(self, agreement_warning: float = 99.0, agreement_critical: float = 95.0):
        """
        Initialize alert rule generator.

        Args:
            agreement_warning: Agreement percentage below which to warn
            agreement_critical: Agreement percentage below which to page
        """
        if agreement_critical > agreement_warning:
            raise ValueError(
                f"Critical threshold ({agreement_critical}) must not exceed "
                f"warning threshold ({agreement_warning})"
            )

        self.agreement_warning = agreement_warning
        self.agreement_critical = agreement_critical
        logger.debug("AlertRuleGenerator initialized")

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Generate complete alert rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_ingestion_alerts(),
            self._generate_transport_alerts(),
            self._generate_reconciliation_alerts(),
        ]

        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_ingestion_alerts(self) -> Dict[str, Any]:
        """Generate feed ingestion alerts."""
        return {
            "name": "feedrecon_ingestion",
            "interval": "30s",
            "rules": [
                _rule(
                    "HighMalformedPayloadRate",
                    'rate(feedrecon_events_received_total{outcome="malformed"}[5m]) > 0.1',
                    "5m", "warning", "ingestion",
                    "Source delivering malformed payloads",
                    "{{ $labels.source }} is dropping {{ $value }} malformed payloads/sec"
                ),
                _rule(
                    "HighDuplicateRate",
                    'rate(feedrecon_events_received_total{outcome="duplicate"}[5m]) '
                    '> rate(feedrecon_events_received_total{outcome="new"}[5m])',
                    "10m", "info", "ingestion",
                    "Source delivering more duplicates than new events",
                    "{{ $labels.source }} duplicate rate exceeds its new event rate"
                ),
                _rule(
                    "SourceStalled",
                    'rate(feedrecon_events_received_total{outcome="new"}[10m]) == 0 '
                    'and feedrecon_source_ready == 0',
                    "15m", "warning", "ingestion",
                    "Source stopped delivering events",
                    "{{ $labels.source }} has not delivered a new event in 15 minutes before reaching its target"
                ),
            ]
        }

    def _generate_transport_alerts(self) -> Dict[str, Any]:
        """Generate transport health alerts."""
        return {
            "name": "feedrecon_transport",
            "interval": "30s",
            "rules": [
                _rule(
                    "SourceTransportFailure",
                    "increase(feedrecon_transport_failures_total[15m]) > 0",
                    "1m", "critical", "transport",
                    "Feed subscription failed",
                    "{{ $labels.source }} subscription failed, aborting the reconciliation run"
                ),
            ]
        }

    def _generate_reconciliation_alerts(self) -> Dict[str, Any]:
        """Generate reconciliation verdict alerts."""
        return {
            "name": "feedrecon_reconciliation",
            "interval": "1m",
            "rules": [
                _rule(
                    "FeedAgreementLow",
                    f"feedrecon_agreement_percentage < {self.agreement_warning}",
                    "0m", "warning", "reconciliation",
                    "Feeds disagree on delivered events",
                    "Agreement in {{ $labels.mode }} mode is {{ $value }}% "
                    f"(below {self.agreement_warning}% threshold)"
                ),
                _rule(
                    "FeedAgreementCritical",
                    f"feedrecon_agreement_percentage < {self.agreement_critical}",
                    "0m", "critical", "reconciliation",
                    "Critical feed disagreement",
                    "Agreement in {{ $labels.mode }} mode is {{ $value }}% "
                    f"(below {self.agreement_critical}% threshold). A feed is dropping events!"
                ),
                _rule(
                    "SourceMissingEvents",
                    "feedrecon_missing_events > 0",
                    "0m", "warning", "reconciliation",
                    "Feed missing events",
                    "{{ $value }} events delivered by {{ $labels.present_in }} are missing from {{ $labels.missing_from }}"
                ),
                _rule(
                    "ReconciliationInsufficientData",
                    'increase(feedrecon_runs_total{status="insufficient_data"}[1h]) > 2',
                    "5m", "info", "reconciliation",
                    "Reconciliation runs ending without a window",
                    "Runs in {{ $labels.mode }} mode keep ending with insufficient data; increase target_count"
                ),
                _rule(
                    "ReconciliationFailure",
                    'increase(feedrecon_runs_total{status="failed"}[1h]) > 0',
                    "5m", "warning", "reconciliation",
                    "Reconciliation runs failing",
                    "Reconciliation runs in {{ $labels.mode }} mode are failing"
                ),
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """
        Export alert rules to YAML file.

        Args:
            output_file: Path to output YAML file
        """
        rules = self.generate_alert_rules()

        with open(output_file, 'w') as f:
            yaml.dump(rules, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self) -> Dict[str, int]:
        """
        Get summary of alert rules.

        Returns:
            Dict with counts by severity
        """
        rules = self.generate_alert_rules()

        summary = {
            "total_groups": len(rules["groups"]),
            "total_alerts": 0,
            "critical": 0,
            "warning": 0,
            "info": 0
        }

        for group in rules["groups"]:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity", "unknown")
                if severity in summary:
                    summary[severity] += 1

        return summary

    def alert_names(self) -> List[str]:
        """Names of all generated alerts."""
        return [
            rule["alert"]
            for group in self.generate_alert_rules()["groups"]
            for rule in group["rules"]
        ]
