"""
Unit tests for reconciliation comparer module.

Tests key normalization across feed clients.
"""

import pytest

from conftest import tx_hash


class TestKeyNormalizer:
    """Test identity and correlation key normalization."""

    @pytest.fixture
    def normalizer(self):
        """Create a KeyNormalizer instance."""
        from src.reconciliation.comparer import KeyNormalizer
        return KeyNormalizer()

    def test_normalize_identity_lowercases(self, normalizer):
        """Test that mixed-case hashes normalize to lowercase."""
        value = "0x" + "AB" * 32
        assert normalizer.normalize_identity(value) == "0x" + "ab" * 32

    def test_normalize_identity_adds_prefix(self, normalizer):
        """Test that a missing 0x prefix is added."""
        assert normalizer.normalize_identity("cd" * 32) == "0x" + "cd" * 32

    def test_normalize_identity_from_bytes(self, normalizer):
        """Test that raw hash bytes are hex encoded."""
        assert normalizer.normalize_identity(bytes(range(32))) == "0x" + bytes(range(32)).hex()

    def test_normalize_identity_rejects_short_hash(self, normalizer):
        """Test that a hash of the wrong length is rejected."""
        with pytest.raises(ValueError, match="32-byte"):
            normalizer.normalize_identity("0x1234")

    def test_normalize_identity_rejects_none(self, normalizer):
        """Test that a NULL identity is rejected."""
        with pytest.raises(ValueError, match="NULL"):
            normalizer.normalize_identity(None)

    def test_normalize_identity_rejects_empty(self, normalizer):
        """Test that an empty identity is rejected."""
        with pytest.raises(ValueError, match="empty"):
            normalizer.normalize_identity("0x")

    def test_normalize_identity_rejects_int(self, normalizer):
        """Test that unsupported types are rejected."""
        with pytest.raises(ValueError, match="Unsupported"):
            normalizer.normalize_identity(12345)

    def test_non_strict_accepts_short_tokens(self):
        """Test that non-strict mode only canonicalizes."""
        from src.reconciliation.comparer import KeyNormalizer
        assert KeyNormalizer(strict_hashes=False).normalize_identity("H1") == "0xh1"

    @pytest.mark.parametrize("value,expected", [
        (17, 17),
        ("0x11", 17),
        ("17", 17),
        (" 0X11 ", 17),
        (0, 0),
    ])
    def test_normalize_correlation(self, normalizer, value, expected):
        """Test block numbers in every encoding clients use."""
        assert normalizer.normalize_correlation(value) == expected

    @pytest.mark.parametrize("value", [None, True, -1, "0xzz", "abc", 1.5])
    def test_normalize_correlation_rejects_invalid(self, normalizer, value):
        """Test that invalid block numbers are rejected."""
        with pytest.raises(ValueError):
            normalizer.normalize_correlation(value)

    def test_sorted_identities_is_lexicographic(self, normalizer):
        """Test the deterministic identity ordering."""
        keys = {tx_hash(3), tx_hash(1), tx_hash(2)}
        assert normalizer.sorted_identities(keys) == [tx_hash(1), tx_hash(2), tx_hash(3)]

    def test_in_bounds_is_inclusive(self, normalizer):
        """Test that window bounds are inclusive on both ends."""
        assert normalizer.in_bounds("h2", "h2", "h4")
        assert normalizer.in_bounds("h4", "h2", "h4")
        assert normalizer.in_bounds("h3", "h2", "h4")
        assert not normalizer.in_bounds("h1", "h2", "h4")
        assert not normalizer.in_bounds("h5", "h2", "h4")
