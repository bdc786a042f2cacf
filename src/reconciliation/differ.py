"""
Set Reconciler for Feed Reconciliation

Compares the identity keys delivered by each source inside the comparison
window and reports every event present in one feed but missing from another.
"""

import logging
from dataclasses import dataclass, field
from itertools import permutations
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from src.reconciliation.comparer import KeyNormalizer
from src.reconciliation.stability import FlatWindow, KeyedWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discrepancy:
    """
    One event seen by a source but not by another.

    Attributes:
        identity_key: Transaction hash
        present_in: Source that delivered the event
        missing_from: Source that did not
        correlation_key: Block number for keyed comparisons
    """

    identity_key: Any
    present_in: str
    missing_from: str
    correlation_key: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_key": self.identity_key,
            "present_in": self.present_in,
            "missing_from": self.missing_from,
            "correlation_key": self.correlation_key,
        }


@dataclass
class ReconciliationReport:
    """
    Result of comparing all sources within a window.

    Attributes:
        mode: "keyed" or "flat"
        source_labels: Sources compared
        raw_sizes: Distinct identity keys per source before windowing
        windowed_sizes: Distinct identity keys per source inside the window
        window: Plain-object description of the window
        discrepancies: Every (identity, present_in, missing_from) asymmetry
        missing_counts: Count per ordered pair (present_in, missing_from)
        event_count: Distinct events inside the window across all sources
    """

    mode: str
    source_labels: List[str]
    raw_sizes: Dict[str, int]
    windowed_sizes: Dict[str, int]
    window: Dict[str, Any]
    discrepancies: List[Discrepancy] = field(default_factory=list)
    missing_counts: Dict[Tuple[str, str], int] = field(default_factory=dict)
    event_count: int = 0

    @property
    def consistent(self) -> bool:
        """True iff no source is missing any event another source delivered."""
        return all(count == 0 for count in self.missing_counts.values()) and not self.discrepancies

    @property
    def discrepancy_count(self) -> int:
        return len(self.discrepancies)

    @property
    def agreement_percentage(self) -> float:
        """Percentage of windowed events delivered by every source (0-100)."""
        if self.event_count == 0:
            return 100.0

        disputed = {(d.correlation_key, d.identity_key) for d in self.discrepancies}
        agreed = self.event_count - len(disputed)
        return round(agreed / self.event_count * 100.0, 2)

    def missing_by_source(self) -> Dict[str, int]:
        """Total events missing from each source, summed over all other sources."""
        totals = {label: 0 for label in self.source_labels}
        for (_, missing_from), count in self.missing_counts.items():
            totals[missing_from] += count
        return totals

    def to_dict(self) -> Dict[str, Any]:
        """Plain-object form for JSON output."""
        return {
            "mode": self.mode,
            "consistent": self.consistent,
            "sources": list(self.source_labels),
            "raw_sizes": dict(self.raw_sizes),
            "windowed_sizes": dict(self.windowed_sizes),
            "window": self.window,
            "event_count": self.event_count,
            "agreement_percentage": self.agreement_percentage,
            "discrepancy_count": self.discrepancy_count,
            "missing_counts": {
                f"{present_in} -> {missing_from}": count
                for (present_in, missing_from), count in sorted(self.missing_counts.items())
            },
            "missing_by_source": self.missing_by_source(),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
        }


class SetReconciler:
    """
    Computes per-pair set differences between sources.

    For every ordered pair (X, Y) with X != Y, each identity key in X's set
    and absent from Y's set is one discrepancy "missing from Y".
    """

    def __init__(self, normalizer: Optional[KeyNormalizer] = None):
        """
        Initialize the set reconciler.

        Args:
            normalizer: Key normalizer providing the identity ordering
        """
        self.normalizer = normalizer or KeyNormalizer()
        logger.debug("Initialized SetReconciler")

    def find_missing_in_target(self, source_ids: Set[Any], target_ids: Set[Any]) -> List[Any]:
        """
        Find identity keys present in source but not in target.

        Args:
            source_ids: Identity keys of the delivering source
            target_ids: Identity keys of the compared source

        Returns:
            Missing keys in deterministic order
        """
        return self.normalizer.sorted_identities(set(source_ids) - set(target_ids))

    def compare_sets(
        self,
        sets: Mapping[str, Set[Any]],
        correlation_key: Optional[Any] = None
    ) -> List[Discrepancy]:
        """
        Compare every ordered pair of source sets.

        Args:
            sets: Source label -> identity keys
            correlation_key: Key these sets belong to, if any

        Returns:
            Discrepancies ordered by pair, then identity key
        """
        discrepancies = []

        for present_in, missing_from in permutations(sets, 2):
            for identity_key in self.find_missing_in_target(sets[present_in], sets[missing_from]):
                discrepancies.append(Discrepancy(
                    identity_key=identity_key,
                    present_in=present_in,
                    missing_from=missing_from,
                    correlation_key=correlation_key
                ))

        return discrepancies

    def reconcile(self, accumulator, window) -> ReconciliationReport:
        """
        Reconcile an accumulator of either layout against its window.

        Args:
            accumulator: KeyedAccumulator or FlatAccumulator
            window: KeyedWindow or FlatWindow from the StabilityDetector

        Returns:
            ReconciliationReport
        """
        if accumulator.keyed:
            return self.reconcile_keyed(accumulator.snapshot(), accumulator.source_labels, window)
        return self.reconcile_flat(accumulator.snapshot(), window)

    def reconcile_keyed(
        self,
        entries: Mapping[Any, Mapping[str, Set[Any]]],
        source_labels: List[str],
        window: KeyedWindow
    ) -> ReconciliationReport:
        """
        Compare sources key by key inside a keyed window.

        Args:
            entries: Correlation key -> source label -> identity keys
            source_labels: Sources under comparison
            window: Keyed comparison window

        Returns:
            ReconciliationReport
        """
        missing_counts = self._empty_pair_counts(source_labels)
        discrepancies: List[Discrepancy] = []
        raw: Dict[str, Set[Any]] = {label: set() for label in source_labels}
        windowed: Dict[str, Set[Any]] = {label: set() for label in source_labels}
        events: Set[Tuple[Any, Any]] = set()

        for entry in entries.values():
            for label in source_labels:
                raw[label].update(entry.get(label, ()))

        for key in window.keys:
            sets = {label: set(entries[key].get(label, ())) for label in source_labels}
            for label in source_labels:
                windowed[label].update(sets[label])
                events.update((key, identity_key) for identity_key in sets[label])

            found = self.compare_sets(sets, correlation_key=key)
            for discrepancy in found:
                missing_counts[(discrepancy.present_in, discrepancy.missing_from)] += 1
                logger.warning(
                    f"Missing transaction in block {key}: {discrepancy.identity_key} "
                    f"delivered by {discrepancy.present_in}, missing from {discrepancy.missing_from}"
                )
            discrepancies.extend(found)

        report = ReconciliationReport(
            mode="keyed",
            source_labels=list(source_labels),
            raw_sizes={label: len(ids) for label, ids in raw.items()},
            windowed_sizes={label: len(ids) for label, ids in windowed.items()},
            window=window.to_dict(),
            discrepancies=discrepancies,
            missing_counts=missing_counts,
            event_count=len(events)
        )
        self._log_summary(report)
        return report

    def windowed_sets(self, sets: Mapping[str, Set[Any]], window: FlatWindow) -> Dict[str, Set[Any]]:
        """
        Restrict each source's set to the flat window bounds.

        Args:
            sets: Source label -> identity keys
            window: Flat comparison window

        Returns:
            Source label -> identity keys within [first, last]
        """
        return {
            label: {
                key for key in ids
                if self.normalizer.in_bounds(key, window.first, window.last)
            }
            for label, ids in sets.items()
        }

    def reconcile_flat(self, sets: Mapping[str, Set[Any]], window: FlatWindow) -> ReconciliationReport:
        """
        Compare windowed source sets.

        Args:
            sets: Source label -> identity keys
            window: Flat comparison window

        Returns:
            ReconciliationReport
        """
        source_labels = list(sets)
        windowed = self.windowed_sets(sets, window)
        discrepancies = self.compare_sets(windowed)

        missing_counts = self._empty_pair_counts(source_labels)
        for discrepancy in discrepancies:
            missing_counts[(discrepancy.present_in, discrepancy.missing_from)] += 1
            logger.warning(
                f"Hash in {discrepancy.present_in} but not in {discrepancy.missing_from}: "
                f"{discrepancy.identity_key}"
            )

        report = ReconciliationReport(
            mode="flat",
            source_labels=source_labels,
            raw_sizes={label: len(ids) for label, ids in sets.items()},
            windowed_sizes={label: len(ids) for label, ids in windowed.items()},
            window=window.to_dict(),
            discrepancies=discrepancies,
            missing_counts=missing_counts,
            event_count=len(set().union(*windowed.values()))
        )
        self._log_summary(report)
        return report

    @staticmethod
    def _empty_pair_counts(source_labels: List[str]) -> Dict[Tuple[str, str], int]:
        return {pair: 0 for pair in permutations(source_labels, 2)}

    @staticmethod
    def _log_summary(report: ReconciliationReport) -> None:
        logger.info(
            f"Reconciliation summary ({report.mode}): "
            f"raw sizes {report.raw_sizes}, windowed sizes {report.windowed_sizes}, "
            f"{report.discrepancy_count} discrepancies, missing by source {report.missing_by_source()}"
        )
