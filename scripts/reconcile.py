#!/usr/bin/env python3
"""
Feed Reconciliation Tool

Subscribes to the same contract events through several providers,
transports and clients, and reports which events each feed missed:
- Keyed (per block) and flat (hash range) comparison
- Warm-up gate to skip the head-of-stream skew between feeds
- Offline runs against recorded captures
- Prometheus metrics and alert rules

Usage:
    ./scripts/reconcile.py run --config feeds.yaml
    ./scripts/reconcile.py run --config feeds.yaml --target-count 200 --output report.json
    ./scripts/reconcile.py check-config --config feeds.yaml
    ./scripts/reconcile.py alerts --output alerts.yaml

Exit status:
    0  run completed (consistent, or inconsistent without --fail-on-discrepancy)
    1  fatal failure (transport, timeout, configuration)
    2  insufficient data, run again with a larger target count
    3  inconsistent and --fail-on-discrepancy was given
"""

import sys
import argparse
import asyncio
import contextlib
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.monitoring import AlertRuleGenerator, FeedMetrics
from src.reconciliation.coordinator import RunCoordinator, RunOutcome, RunStatus
from src.reconciliation.errors import FeedReconciliationError
from src.utils.config import RunConfig, load_config
from src.utils.log_format import configure_logging
from src.utils.run_context import RunContext
from src.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)


class FeedReconciliationTool:
    """Runs reconciliation for a loaded configuration."""

    def __init__(self, config: RunConfig, metrics: Optional[FeedMetrics] = None):
        """
        Initialize the tool.

        Args:
            config: Validated run configuration
            metrics: Metrics collector (created when metrics are configured)
        """
        self.config = config
        self.metrics = metrics
        if self.metrics is None and (config.metrics.port or config.metrics.pushgateway_url):
            self.metrics = FeedMetrics()

    def _open_vault(self):
        if not self.config.uses_vault:
            return contextlib.nullcontext()
        return VaultClient()

    def run(self) -> RunOutcome:
        """
        Execute one reconciliation run.

        Returns:
            RunOutcome (status FAILED on fatal errors)
        """
        if self.metrics is not None and self.config.metrics.port:
            self.metrics.start_server(self.config.metrics.port)

        with RunContext() as run_id, self._open_vault() as vault_client:
            started_at = datetime.now(timezone.utc)
            coordinator = None
            try:
                coordinator = RunCoordinator.from_config(
                    self.config,
                    vault_client=vault_client,
                    metrics=self.metrics
                )
                outcome = asyncio.run(coordinator.run())
            except FeedReconciliationError as e:
                logger.error(f"Run {run_id} failed: {e}")
                outcome = RunOutcome(
                    status=RunStatus.FAILED,
                    run_id=run_id,
                    mode=self.config.mode,
                    reason=str(e),
                    accumulator=coordinator.accumulator.to_dict() if coordinator else {},
                    progress=coordinator.accumulator.progress_snapshot() if coordinator else {},
                    started_at=started_at,
                    finished_at=datetime.now(timezone.utc)
                )

            self._push_metrics(run_id)

        if outcome.status is RunStatus.INSUFFICIENT_DATA:
            logger.warning(f"Insufficient data: {outcome.reason}")

        return outcome

    def _push_metrics(self, run_id: str) -> None:
        gateway = self.config.metrics.pushgateway_url
        if self.metrics is None or not gateway:
            return

        try:
            self.metrics.push(gateway, self.config.metrics.job_name, grouping_key={"run_id": run_id})
        except Exception as e:
            logger.warning(f"Metrics push failed, continuing: {e}")


def write_output(data: Dict[str, Any], output: Optional[str]) -> None:
    """Write JSON to a file, or stdout when no file is given."""
    text = json.dumps(data, indent=2, default=str)
    if output:
        Path(output).write_text(text + "\n")
        logger.info(f"Wrote report to {output}")
    else:
        print(text)


def check_config(config: RunConfig) -> int:
    """Print the redacted configuration, with Vault health when Vault is used."""
    data = config.redacted()
    healthy = True

    if config.uses_vault:
        with VaultClient() as vault:
            status = vault.health_check()
        data["vault"] = status.to_dict()
        healthy = status.healthy

    print(json.dumps(data, indent=2, default=str))
    return 0 if healthy else 1


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Feed Reconciliation Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a reconciliation")
    run_parser.add_argument("--config", required=True, help="Run configuration YAML")
    run_parser.add_argument("--output", help="Write the JSON report to this file")
    run_parser.add_argument("--target-count", type=int, help="Override target_count")
    run_parser.add_argument(
        "--fail-on-discrepancy",
        action="store_true",
        help="Exit with status 3 when feeds disagree"
    )

    # Check-config command
    check_parser = subparsers.add_parser("check-config", help="Validate a configuration")
    check_parser.add_argument("--config", required=True, help="Run configuration YAML")

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="Export Prometheus alert rules")
    alerts_parser.add_argument("--output", required=True, help="Output YAML file")

    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose, json_logs=args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == "alerts":
            generator = AlertRuleGenerator()
            generator.export_to_yaml(args.output)
            print(json.dumps(generator.get_alert_summary(), indent=2))
            return 0

        config = load_config(args.config)

        if args.command == "check-config":
            return check_config(config)

        if args.target_count is not None:
            config.target_count = args.target_count
            config.validate()

        outcome = FeedReconciliationTool(config).run()
        write_output(outcome.to_dict(), args.output)
        return outcome.status.exit_code(args.fail_on_discrepancy)

    except ValueError as e:
        logger.error(f"Configuration error: {e}", exc_info=args.verbose)
        return 1
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
