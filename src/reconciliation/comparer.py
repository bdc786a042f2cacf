"""
Key Normalization for Feed Reconciliation

Normalizes identity keys (transaction hashes) and correlation keys (block
numbers) delivered by different clients into one canonical form, and defines
the deterministic ordering used by the flat comparison window.
"""

import logging
import re
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)

_HASH_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")


class KeyNormalizer:
    """
    Normalizes keys from heterogeneous feed clients.

    Clients disagree on casing, prefixes and number encodings: one returns
    block numbers as hex quantities, another as integers; some return hashes
    as raw bytes.
    """

    def __init__(self, strict_hashes: bool = True):
        """
        Initialize the key normalizer.

        Args:
            strict_hashes: Require identity keys to be 32-byte hex hashes
        """
        self.strict_hashes = strict_hashes
        logger.debug(f"Initialized KeyNormalizer (strict_hashes={strict_hashes})")

    def normalize_identity(self, value: Any) -> str:
        """
        Normalize an identity key to its canonical string form.

        Args:
            value: Hash as str, bytes or bytearray

        Returns:
            Lowercase, 0x-prefixed hex string

        Raises:
            ValueError: If the value is empty or not a valid hash
        """
        if value is None:
            raise ValueError("Identity key is NULL")

        if isinstance(value, (bytes, bytearray)):
            text = "0x" + bytes(value).hex()
        elif isinstance(value, str):
            text = value.strip().lower()
            if not text.startswith("0x"):
                text = "0x" + text
        else:
            raise ValueError(f"Unsupported identity key type: {type(value).__name__}")

        if text == "0x":
            raise ValueError("Identity key is empty")

        if self.strict_hashes and not _HASH_PATTERN.match(text):
            raise ValueError(f"Identity key is not a 32-byte hex hash: {text}")

        return text

    def normalize_correlation(self, value: Any) -> int:
        """
        Normalize a correlation key (block number) to an int.

        Args:
            value: Block number as int, decimal string or hex quantity

        Returns:
            Non-negative integer block number

        Raises:
            ValueError: If the value cannot be parsed
        """
        if value is None:
            raise ValueError("Correlation key is NULL")

        # bool is an int subclass
        if isinstance(value, bool):
            raise ValueError("Correlation key cannot be a boolean")

        if isinstance(value, int):
            number = value
        elif isinstance(value, str):
            text = value.strip().lower()
            try:
                number = int(text, 16) if text.startswith("0x") else int(text)
            except ValueError as e:
                raise ValueError(f"Invalid correlation key: {value!r}") from e
        else:
            raise ValueError(f"Unsupported correlation key type: {type(value).__name__}")

        if number < 0:
            raise ValueError(f"Correlation key must be non-negative: {number}")

        return number

    @staticmethod
    def sort_key(identity_key: Any) -> str:
        """Total order for identity keys: lexicographic over the string form."""
        return str(identity_key)

    def sorted_identities(self, identity_keys: Iterable[Any]) -> List[Any]:
        """
        Sort identity keys by the deterministic order.

        Args:
            identity_keys: Keys to sort

        Returns:
            New sorted list
        """
        return sorted(identity_keys, key=self.sort_key)

    def in_bounds(self, identity_key: Any, first: Any, last: Any) -> bool:
        """
        Check whether a key lies within [first, last] by the deterministic order.

        Args:
            identity_key: Key to test
            first: Inclusive lower bound
            last: Inclusive upper bound

        Returns:
            True if first <= identity_key <= last
        """
        key = self.sort_key(identity_key)
        return self.sort_key(first) <= key <= self.sort_key(last)
