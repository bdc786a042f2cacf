"""
Reconciliation Module for Feed Reconciliation

This module collects events from several independent feeds into a shared
accumulator, finds the window where every feed has caught up, and reports
which events are missing from which feed.

Main components:
- accumulator: Keyed and flat event accumulators with the warm-up gate
- listener: Per-source adapter with a single-fire completion future
- stability: Comparison window detection
- differ: Per-pair set reconciliation
- coordinator: Run orchestration and terminal status

listener and coordinator depend on src.feeds and are imported from their
own modules, e.g. `from src.reconciliation.coordinator import RunCoordinator`.

Usage:
    from src.reconciliation import KeyedAccumulator, StabilityDetector, SetReconciler

    accumulator = KeyedAccumulator(["a/ws/x", "b/ws/y"], target_count=3)
    accumulator.record(100, "a/ws/x", "0x...")

    result = StabilityDetector().detect(accumulator)
    if result.found:
        report = SetReconciler().reconcile(accumulator, result.window)
"""

from src.reconciliation.accumulator import FlatAccumulator, KeyedAccumulator, WarmupGate
from src.reconciliation.comparer import KeyNormalizer
from src.reconciliation.differ import Discrepancy, ReconciliationReport, SetReconciler
from src.reconciliation.errors import (
    ConfigError,
    FeedReconciliationError,
    MalformedPayload,
    RunTimeout,
    TransportFailure,
)
from src.reconciliation.records import EventRecord, RecordOutcome, make_source_label
from src.reconciliation.stability import FlatWindow, KeyedWindow, StabilityDetector, WindowResult

__all__ = [
    "KeyedAccumulator",
    "FlatAccumulator",
    "WarmupGate",
    "KeyNormalizer",
    "Discrepancy",
    "ReconciliationReport",
    "SetReconciler",
    "FeedReconciliationError",
    "TransportFailure",
    "MalformedPayload",
    "RunTimeout",
    "ConfigError",
    "EventRecord",
    "RecordOutcome",
    "make_source_label",
    "KeyedWindow",
    "FlatWindow",
    "WindowResult",
    "StabilityDetector",
]

__version__ = "1.0.0"
