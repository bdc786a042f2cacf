"""
Unit tests for run_context module.
"""

import asyncio
import logging
import uuid

import pytest

from src.utils.run_context import (
    RunContext,
    clear_run_id,
    generate_run_id,
    get_or_create_run_id,
    get_run_id,
    run_id_filter,
    set_run_id,
    setup_run_logging,
)


class TestRunIdGeneration:
    """Test run ID generation."""

    def test_generate_run_id_returns_valid_uuid(self):
        """Test that the generated run ID is a valid UUID."""
        run_id = generate_run_id()

        assert len(run_id) == 36
        assert str(uuid.UUID(run_id)) == run_id

    def test_generate_run_id_returns_unique_values(self):
        """Test that generated IDs are unique."""
        assert len({generate_run_id() for _ in range(3)}) == 3


class TestRunIdContext:
    """Test run ID context management."""

    def test_get_run_id_returns_none_when_not_set(self):
        """Test that get returns None when no ID is set."""
        assert get_run_id() is None

    def test_set_and_get_run_id(self):
        """Test setting and retrieving the run ID."""
        set_run_id("run-1")
        assert get_run_id() == "run-1"

    @pytest.mark.parametrize("value", ["", None, 42])
    def test_set_run_id_rejects_invalid(self, value):
        """Test that empty or non-string IDs are rejected."""
        with pytest.raises(ValueError, match="non-empty string"):
            set_run_id(value)

    def test_get_or_create_run_id(self):
        """Test that an ID is created once and then reused."""
        first = get_or_create_run_id()
        assert get_or_create_run_id() == first

    def test_clear_run_id(self):
        """Test clearing the run ID."""
        set_run_id("run-1")
        clear_run_id()
        assert get_run_id() is None

    def test_context_manager_generates_and_clears(self):
        """Test RunContext without an explicit ID."""
        with RunContext() as run_id:
            assert get_run_id() == run_id
        assert get_run_id() is None

    def test_context_manager_restores_previous(self):
        """Test that nested contexts restore the outer ID."""
        with RunContext("outer"):
            with RunContext("inner"):
                assert get_run_id() == "inner"
            assert get_run_id() == "outer"

    def test_tasks_inherit_run_id(self):
        """Test that asyncio tasks see the run ID of their creator."""
        async def read():
            return get_run_id()

        with RunContext("run-async"):
            assert asyncio.run(read()) == "run-async"


class TestRunIdLogging:
    """Test the logging filter."""

    def test_filter_sets_run_id(self):
        """Test that records are stamped with the run ID."""
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)

        with RunContext("run-log"):
            assert run_id_filter(record) is True
        assert record.run_id == "run-log"

    def test_filter_without_run_id(self):
        """Test the placeholder when no run is active."""
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)

        run_id_filter(record)

        assert record.run_id == "N/A"

    def test_setup_run_logging(self):
        """Test that the filter is attached to a handler."""
        handler = logging.StreamHandler()

        setup_run_logging(handler)

        assert run_id_filter in handler.filters
