"""
Event Accumulators for Feed Reconciliation

Shared data structures that collect identity keys from all sources while the
listeners are running. Every listener submits through one accumulator, which
is the single owner of mutation.

- KeyedAccumulator: correlation key -> source label -> set of identity keys
- FlatAccumulator: source label -> set of identity keys
- WarmupGate: cross-source quorum that must be reached before any progress
  counter advances
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from src.reconciliation.records import EventRecord, RecordOutcome

logger = logging.getLogger(__name__)


class WarmupGate:
    """
    Suppresses progress counting until enough sources agree on one event.

    Fast sources can deliver the head of the stream before slow sources have
    started. The gate opens the first time `quorum` distinct sources have
    observed the same identity key and stays open for the rest of the run.
    A quorum of 0 or 1 leaves the gate permanently open.
    """

    def __init__(self, quorum: int = 0):
        """
        Initialize the warm-up gate.

        Args:
            quorum: Number of distinct sources that must share an identity key
        """
        if quorum < 0:
            raise ValueError(f"Gate quorum must be non-negative, got {quorum}")

        self.quorum = quorum
        self._sightings: Dict[Any, Set[str]] = {}
        self._open = quorum <= 1
        self.opened_by: Optional[Any] = None

    @property
    def is_open(self) -> bool:
        """Whether progress counters may advance."""
        return self._open

    def observe(self, identity_key: Any, source_label: str) -> bool:
        """
        Register that a source has seen an identity key.

        Args:
            identity_key: Identity key seen
            source_label: Source that saw it

        Returns:
            True if the gate is open after this observation
        """
        if self._open:
            return True

        sources = self._sightings.setdefault(identity_key, set())
        sources.add(source_label)

        if len(sources) >= self.quorum:
            self._open = True
            self.opened_by = identity_key
            # Sightings are only needed while closed
            self._sightings.clear()
            logger.info(
                f"Warm-up gate opened by {identity_key} "
                f"(seen by {self.quorum} sources)"
            )

        return self._open


class _BaseAccumulator(ABC):
    """Progress tracking and gating shared by both accumulator layouts."""

    def __init__(
        self,
        source_labels: Iterable[str],
        target_count: int,
        gate: Optional[WarmupGate] = None
    ):
        labels = list(source_labels)

        if not labels:
            raise ValueError("At least one source label is required")
        if len(set(labels)) != len(labels):
            raise ValueError(f"Source labels must be unique: {labels}")
        if target_count < 1:
            raise ValueError(f"Target count must be positive, got {target_count}")

        self.source_labels: List[str] = labels
        self.target_count = target_count
        self.gate = gate or WarmupGate()
        self._progress: Dict[str, int] = {label: 0 for label in labels}
        self._lock = threading.Lock()

    def submit(self, record: EventRecord) -> RecordOutcome:
        """
        Record an EventRecord.

        Args:
            record: Decoded event

        Returns:
            RecordOutcome for this submission
        """
        return self.record(record.correlation_key, record.source_label, record.identity_key)

    @abstractmethod
    def record(self, correlation_key: Any, source_label: str, identity_key: Any) -> RecordOutcome:
        """Record one identity key for a source and advance its progress counter."""

    def progress(self, source_label: str) -> int:
        """Current progress counter for a source."""
        with self._lock:
            return self._progress[source_label]

    def progress_snapshot(self) -> Dict[str, int]:
        """Progress counters for all sources."""
        with self._lock:
            return dict(self._progress)

    def is_ready(self, source_label: str) -> bool:
        """Whether a source has reached the target count."""
        return self.progress(source_label) >= self.target_count

    def _check_label(self, source_label: str) -> None:
        if source_label not in self._progress:
            raise ValueError(
                f"Unknown source label: {source_label}. "
                f"Known labels: {self.source_labels}"
            )

    def _advance(self, source_label: str, identity_key: Any) -> RecordOutcome:
        # Caller holds the lock and has just inserted a new identity key
        if not self.gate.observe(identity_key, source_label):
            return RecordOutcome(
                is_new_for_source=True,
                crossed_ready_threshold=False,
                progress=self._progress[source_label]
            )

        self._progress[source_label] += 1
        progress = self._progress[source_label]

        return RecordOutcome(
            is_new_for_source=True,
            crossed_ready_threshold=progress == self.target_count,
            progress=progress
        )


class KeyedAccumulator(_BaseAccumulator):
    """
    Buckets identity keys by correlation key and source.

    A new correlation key is initialized with an empty set for every known
    source, so a missing contribution is always an empty set rather than an
    absent entry.
    """

    keyed = True

    def __init__(
        self,
        source_labels: Iterable[str],
        target_count: int,
        gate: Optional[WarmupGate] = None
    ):
        """
        Initialize the keyed accumulator.

        Args:
            source_labels: Fixed set of sources under comparison
            target_count: Progress count at which a source is ready
            gate: Optional warm-up gate (always open by default)
        """
        super().__init__(source_labels, target_count, gate)
        self._entries: Dict[Any, Dict[str, Set[Any]]] = {}
        logger.debug(
            f"Initialized KeyedAccumulator for {len(self.source_labels)} sources "
            f"(target_count={target_count}, gate_quorum={self.gate.quorum})"
        )

    def record(self, correlation_key: Any, source_label: str, identity_key: Any) -> RecordOutcome:
        """
        Record that a source delivered an identity key for a correlation key.

        Args:
            correlation_key: Block number
            source_label: Delivering source
            identity_key: Transaction hash

        Returns:
            RecordOutcome describing whether the key was new and whether the
            source just reached its target

        Raises:
            ValueError: If the source label or correlation key is invalid
        """
        if correlation_key is None:
            raise ValueError("KeyedAccumulator requires a correlation key")

        with self._lock:
            self._check_label(source_label)

            entry = self._entries.get(correlation_key)
            if entry is None:
                entry = {label: set() for label in self.source_labels}
                self._entries[correlation_key] = entry

            identities = entry[source_label]
            if identity_key in identities:
                return RecordOutcome(
                    is_new_for_source=False,
                    crossed_ready_threshold=False,
                    progress=self._progress[source_label]
                )

            identities.add(identity_key)
            return self._advance(source_label, identity_key)

    def correlation_keys(self) -> List[Any]:
        """All correlation keys seen so far, ascending."""
        with self._lock:
            return sorted(self._entries)

    def snapshot(self) -> Dict[Any, Dict[str, Set[Any]]]:
        """
        Copy of the accumulated state.

        Returns:
            Mapping correlation key -> source label -> set of identity keys
        """
        with self._lock:
            return {
                key: {label: set(ids) for label, ids in entry.items()}
                for key, entry in self._entries.items()
            }

    def source_sizes(self) -> Dict[str, int]:
        """Number of distinct identity keys recorded per source across all keys."""
        with self._lock:
            sizes = {}
            for label in self.source_labels:
                union: Set[Any] = set()
                for entry in self._entries.values():
                    union.update(entry[label])
                sizes[label] = len(union)
            return sizes

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        """Plain-object form: stringified keys and sorted identity lists."""
        return {
            str(key): {label: sorted(str(i) for i in ids) for label, ids in entry.items()}
            for key, entry in sorted(self.snapshot().items())
        }


class FlatAccumulator(_BaseAccumulator):
    """
    Collects identity keys per source with no correlation key.

    Used when sources share no meaningful grouping key; the comparison
    window is then found over the identity keys themselves.
    """

    keyed = False

    def __init__(
        self,
        source_labels: Iterable[str],
        target_count: int,
        gate: Optional[WarmupGate] = None
    ):
        """
        Initialize the flat accumulator.

        Args:
            source_labels: Fixed set of sources under comparison
            target_count: Progress count at which a source is ready
            gate: Optional warm-up gate (always open by default)
        """
        super().__init__(source_labels, target_count, gate)
        self._sets: Dict[str, Set[Any]] = {label: set() for label in self.source_labels}
        logger.debug(
            f"Initialized FlatAccumulator for {len(self.source_labels)} sources "
            f"(target_count={target_count}, gate_quorum={self.gate.quorum})"
        )

    def record(self, correlation_key: Any, source_label: str, identity_key: Any) -> RecordOutcome:
        """
        Record that a source delivered an identity key.

        Args:
            correlation_key: Ignored in flat mode
            source_label: Delivering source
            identity_key: Transaction hash

        Returns:
            RecordOutcome for this submission
        """
        with self._lock:
            self._check_label(source_label)

            identities = self._sets[source_label]
            if identity_key in identities:
                return RecordOutcome(
                    is_new_for_source=False,
                    crossed_ready_threshold=False,
                    progress=self._progress[source_label]
                )

            identities.add(identity_key)
            return self._advance(source_label, identity_key)

    def snapshot(self) -> Dict[str, Set[Any]]:
        """Copy of the accumulated sets per source."""
        with self._lock:
            return {label: set(ids) for label, ids in self._sets.items()}

    def source_sizes(self) -> Dict[str, int]:
        """Number of identity keys recorded per source."""
        with self._lock:
            return {label: len(ids) for label, ids in self._sets.items()}

    def to_dict(self) -> Dict[str, List[str]]:
        """Plain-object form with sorted identity lists."""
        return {label: sorted(str(i) for i in ids) for label, ids in self.snapshot().items()}
