"""
Stability Detection for Feed Reconciliation

Finds the region of accumulated data where every source is expected to have
caught up, so that timing skew between feeds is not reported as missing
events.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from src.reconciliation.comparer import KeyNormalizer

logger = logging.getLogger(__name__)


@dataclass
class KeyedWindow:
    """
    Comparison window over correlation keys.

    Attributes:
        first_complete_key: First key every source contributed to (excluded)
        keys: Correlation keys eligible for comparison, ascending
        trimmed_tail: Keys dropped after the last complete key
    """

    first_complete_key: Any
    keys: List[Any]
    trimmed_tail: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "keyed",
            "first_complete_key": self.first_complete_key,
            "keys": list(self.keys),
            "trimmed_tail": list(self.trimmed_tail),
        }


@dataclass
class FlatWindow:
    """
    Comparison window over identity keys, inclusive on both ends.

    Attributes:
        reference_source: Source whose sorted sequence was scanned
        first: First identity key present in all sources
        last: Last identity key present in all sources
    """

    reference_source: str
    first: Any
    last: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "flat",
            "reference_source": self.reference_source,
            "first": self.first,
            "last": self.last,
        }


Window = Union[KeyedWindow, FlatWindow]


@dataclass
class WindowResult:
    """Outcome of a window search: a window, or the reason none was found."""

    window: Optional[Window] = None
    reason: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.window is not None


class StabilityDetector:
    """
    Locates the comparison window in accumulated data.

    Keyed data: the first correlation key every source contributed to marks
    the end of warm-up; only keys strictly after it are compared.

    Flat data: the window spans from the first to the last identity key of a
    reference source that every other source also delivered.
    """

    def __init__(
        self,
        min_window_keys: int = 1,
        trim_tail: bool = False,
        normalizer: Optional[KeyNormalizer] = None
    ):
        """
        Initialize the stability detector.

        Args:
            min_window_keys: Smallest keyed window accepted for comparison
            trim_tail: Drop keyed entries after the last complete key
            normalizer: Key normalizer providing the identity ordering
        """
        if min_window_keys < 1:
            raise ValueError(f"min_window_keys must be at least 1, got {min_window_keys}")

        self.min_window_keys = min_window_keys
        self.trim_tail = trim_tail
        self.normalizer = normalizer or KeyNormalizer()

    def detect(self, accumulator, reference_source: Optional[str] = None) -> WindowResult:
        """
        Find the window for an accumulator of either layout.

        Args:
            accumulator: KeyedAccumulator or FlatAccumulator
            reference_source: Reference source for flat data

        Returns:
            WindowResult
        """
        if accumulator.keyed:
            return self.find_keyed_window(accumulator.snapshot(), accumulator.source_labels)
        return self.find_flat_window(accumulator.snapshot(), reference_source)

    @staticmethod
    def is_complete(entry: Mapping[str, Set[Any]], source_labels: List[str]) -> bool:
        """A correlation key is complete when every source has at least one identity."""
        return all(entry.get(label) for label in source_labels)

    def find_keyed_window(
        self,
        entries: Mapping[Any, Mapping[str, Set[Any]]],
        source_labels: List[str]
    ) -> WindowResult:
        """
        Find the keyed comparison window.

        Args:
            entries: Correlation key -> source label -> identity keys
            source_labels: Sources under comparison

        Returns:
            WindowResult with a KeyedWindow, or the insufficient-data reason
        """
        keys = sorted(entries)
        complete = [self.is_complete(entries[key], source_labels) for key in keys]

        if not any(complete):
            reason = (
                f"no correlation key received data from all {len(source_labels)} sources "
                f"({len(keys)} keys seen)"
            )
            logger.warning(f"Insufficient data: {reason}")
            return WindowResult(reason=reason)

        first_index = complete.index(True)
        window_keys = keys[first_index + 1:]

        trimmed: List[Any] = []
        if self.trim_tail and window_keys:
            last_index = len(complete) - 1 - complete[::-1].index(True)
            window_keys = keys[first_index + 1:last_index + 1]
            trimmed = keys[last_index + 1:]

        if len(window_keys) < self.min_window_keys:
            reason = (
                f"window after first complete key {keys[first_index]} has "
                f"{len(window_keys)} keys, need at least {self.min_window_keys}"
            )
            logger.warning(f"Insufficient data: {reason}")
            return WindowResult(reason=reason)

        logger.info(
            f"Keyed window: {len(window_keys)} keys after first complete key "
            f"{keys[first_index]}"
        )
        return WindowResult(
            window=KeyedWindow(
                first_complete_key=keys[first_index],
                keys=window_keys,
                trimmed_tail=trimmed
            )
        )

    def find_flat_window(
        self,
        sets: Mapping[str, Set[Any]],
        reference_source: Optional[str] = None
    ) -> WindowResult:
        """
        Find the flat comparison window.

        Args:
            sets: Source label -> identity keys
            reference_source: Source to scan (defaults to the first source)

        Returns:
            WindowResult with a FlatWindow, or the no-overlap reason
        """
        if not sets:
            return WindowResult(reason="no sources to compare")

        reference = reference_source or next(iter(sets))
        if reference not in sets:
            raise ValueError(f"Unknown reference source: {reference}")

        others = [ids for label, ids in sets.items() if label != reference]
        ordered = self.normalizer.sorted_identities(sets[reference])

        def in_all(identity_key: Any) -> bool:
            return all(identity_key in ids for ids in others)

        first = next((key for key in ordered if in_all(key)), None)
        last = next((key for key in reversed(ordered) if in_all(key)), None)

        if first is None or last is None:
            reason = f"no identity key from {reference} is present in every other source"
            logger.warning(f"Insufficient data: {reason}")
            return WindowResult(reason=reason)

        logger.info(f"Flat window on {reference}: [{first}, {last}]")
        return WindowResult(window=FlatWindow(reference_source=reference, first=first, last=last))
