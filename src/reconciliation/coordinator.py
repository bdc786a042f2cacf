"""
Run Coordinator for Feed Reconciliation

Drives one reconciliation run: starts a listener per source, waits for every
listener to reach its target (failing fast on the first transport failure),
then locates the comparison window and reconciles the sources.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from src.feeds.base import EventSource, LogFilter
from src.reconciliation.accumulator import FlatAccumulator, KeyedAccumulator, WarmupGate
from src.reconciliation.differ import ReconciliationReport, SetReconciler
from src.reconciliation.errors import FeedReconciliationError, RunTimeout
from src.reconciliation.listener import SourceListener
from src.reconciliation.stability import StabilityDetector
from src.utils.run_context import get_or_create_run_id

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """Terminal outcome of a run."""

    CONSISTENT = "consistent"
    INCONSISTENT = "inconsistent"
    INSUFFICIENT_DATA = "insufficient_data"
    FAILED = "failed"

    def exit_code(self, fail_on_discrepancy: bool = False) -> int:
        """
        Process exit status for this outcome.

        Args:
            fail_on_discrepancy: Treat an inconsistent verdict as a failure

        Returns:
            0 consistent (and inconsistent unless fail_on_discrepancy, then 3),
            2 insufficient data, 1 failed
        """
        if self is RunStatus.CONSISTENT:
            return 0
        if self is RunStatus.INCONSISTENT:
            return 3 if fail_on_discrepancy else 0
        if self is RunStatus.INSUFFICIENT_DATA:
            return 2
        return 1


@dataclass
class RunOutcome:
    """
    Everything a finished run produced.

    Attributes:
        status: Terminal status
        run_id: Run identifier
        mode: keyed or flat
        report: Reconciliation report (None unless a window was found)
        reason: Explanation for insufficient data or failure
        accumulator: Plain-object dump of the accumulated state
        progress: Final progress counter per source
        malformed: Malformed payloads dropped per source
        duplicates: Duplicate payloads per source
        started_at: UTC start time
        finished_at: UTC end time
    """

    status: RunStatus
    run_id: str
    mode: str
    report: Optional[ReconciliationReport] = None
    reason: Optional[str] = None
    accumulator: Dict[str, Any] = field(default_factory=dict)
    progress: Dict[str, int] = field(default_factory=dict)
    malformed: Dict[str, int] = field(default_factory=dict)
    duplicates: Dict[str, int] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Plain-object form for JSON output."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "mode": self.mode,
            "reason": self.reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "progress": dict(self.progress),
            "malformed": dict(self.malformed),
            "duplicates": dict(self.duplicates),
            "report": self.report.to_dict() if self.report else None,
            "accumulator": self.accumulator,
        }


class RunCoordinator:
    """
    Coordinates listeners, window detection and reconciliation for one run.

    Usage:
        coordinator = RunCoordinator(sources, log_filter, target_count=1000)
        outcome = await coordinator.run()
    """

    def __init__(
        self,
        sources: Mapping[str, EventSource],
        log_filter: LogFilter,
        target_count: int = 1000,
        mode: str = "keyed",
        gate_quorum: int = 0,
        min_window_keys: int = 1,
        trim_tail: bool = False,
        reference_source: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        metrics=None
    ):
        """
        Initialize the coordinator.

        Args:
            sources: Source label -> EventSource
            log_filter: Filter shared by every source
            target_count: Counted events each source must deliver
            mode: "keyed" (grouped by block) or "flat"
            gate_quorum: Sources that must share an event before counting starts
            min_window_keys: Smallest keyed window accepted
            trim_tail: Drop keyed entries after the last complete key
            reference_source: Reference source for the flat window
            timeout_seconds: Deadline for all listeners to finish
            metrics: Optional FeedMetrics
        """
        if mode not in ("keyed", "flat"):
            raise ValueError(f"Invalid mode: {mode}. Must be 'keyed' or 'flat'")
        if len(sources) < 2:
            raise ValueError(f"At least two sources are required, got {len(sources)}")

        self.sources = dict(sources)
        self.log_filter = log_filter
        self.mode = mode
        self.reference_source = reference_source
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics

        accumulator_cls = KeyedAccumulator if mode == "keyed" else FlatAccumulator
        self.accumulator = accumulator_cls(
            self.sources.keys(),
            target_count,
            gate=WarmupGate(gate_quorum)
        )
        self.detector = StabilityDetector(min_window_keys=min_window_keys, trim_tail=trim_tail)
        self.reconciler = SetReconciler()

        self.listeners = [
            SourceListener(label, source, self.accumulator, log_filter, metrics=metrics)
            for label, source in self.sources.items()
        ]

    @classmethod
    def from_config(cls, config, vault_client=None, metrics=None) -> "RunCoordinator":
        """
        Build a coordinator from a RunConfig.

        Args:
            config: Validated RunConfig
            vault_client: VaultClient for api_key_vault references
            metrics: Optional FeedMetrics

        Returns:
            RunCoordinator
        """
        from src.feeds.factory import build_sources

        return cls(
            sources=build_sources(config.sources, vault_client),
            log_filter=config.filter,
            target_count=config.target_count,
            mode=config.mode,
            gate_quorum=config.gate_quorum,
            min_window_keys=config.min_window_keys,
            trim_tail=config.trim_tail,
            reference_source=config.reference_source,
            timeout_seconds=config.timeout_seconds,
            metrics=metrics
        )

    async def run(self) -> RunOutcome:
        """
        Execute the run.

        Returns:
            RunOutcome with CONSISTENT, INCONSISTENT or INSUFFICIENT_DATA

        Raises:
            TransportFailure: If any listener fails
            RunTimeout: If listeners do not finish before the deadline
        """
        run_id = get_or_create_run_id()
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        logger.info(
            f"Starting {self.mode} run {run_id} over {len(self.listeners)} sources "
            f"(target_count={self.accumulator.target_count}, gate_quorum={self.accumulator.gate.quorum})"
        )

        try:
            await self._collect()
        except FeedReconciliationError:
            if self.metrics is not None:
                self.metrics.record_run(
                    mode=self.mode,
                    status=RunStatus.FAILED.value,
                    duration_seconds=time.monotonic() - start
                )
            raise

        outcome = self.evaluate(run_id)
        outcome.started_at = started_at
        outcome.finished_at = datetime.now(timezone.utc)

        if self.metrics is not None:
            self.metrics.record_run(
                mode=self.mode,
                status=outcome.status.value,
                duration_seconds=time.monotonic() - start,
                report=outcome.report
            )

        logger.info(
            f"Run {run_id} finished: {outcome.status.value}",
            extra={
                'mode': self.mode,
                'duration': outcome.duration_seconds,
                'discrepancies': outcome.report.discrepancy_count if outcome.report else None,
            }
        )
        return outcome

    async def _collect(self) -> None:
        futures = await asyncio.gather(*(listener.start() for listener in self.listeners))

        try:
            done, pending = await asyncio.wait(
                futures,
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_EXCEPTION
            )

            for future in done:
                if not future.cancelled() and future.exception() is not None:
                    raise future.exception()

            if pending:
                waiting = [l.label for l in self.listeners if not l.done]
                raise RunTimeout(
                    f"Listeners did not reach target within {self.timeout_seconds}s: "
                    f"{waiting} (progress {self.accumulator.progress_snapshot()})"
                )
        finally:
            await self.stop()

        logger.info(f"All {len(self.listeners)} listeners reached target")

    async def stop(self) -> None:
        """Stop every listener."""
        await asyncio.gather(*(listener.stop() for listener in self.listeners))

    def evaluate(self, run_id: Optional[str] = None) -> RunOutcome:
        """
        Detect the window and reconcile the accumulated data.

        Args:
            run_id: Run identifier (defaults to the current one)

        Returns:
            RunOutcome
        """
        run_id = run_id or get_or_create_run_id()
        outcome = RunOutcome(
            status=RunStatus.INSUFFICIENT_DATA,
            run_id=run_id,
            mode=self.mode,
            accumulator=self.accumulator.to_dict(),
            progress=self.accumulator.progress_snapshot(),
            malformed={l.label: l.malformed_count for l in self.listeners},
            duplicates={l.label: l.duplicate_count for l in self.listeners}
        )

        result = self.detector.detect(self.accumulator, self.reference_source)
        if not result.found:
            outcome.reason = f"{result.reason}; run again with a larger target count"
            return outcome

        report = self.reconciler.reconcile(self.accumulator, result.window)
        outcome.report = report
        outcome.status = RunStatus.CONSISTENT if report.consistent else RunStatus.INCONSISTENT
        return outcome
