"""
Unit tests for reconciliation coordinator module.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from conftest import FailingSource, SilentSource, log_payload, tx_hash
from src.feeds.replay import ReplaySource
from src.monitoring.metrics import FeedMetrics
from src.reconciliation.coordinator import RunCoordinator, RunStatus
from src.reconciliation.errors import RunTimeout, TransportFailure
from src.utils.run_context import RunContext


def replay(label, events, delay=0.0):
    """ReplaySource delivering (hash number, block) pairs."""
    return ReplaySource(label, [log_payload(n, block=b) for n, b in events], delay=delay)


class TestRunStatus:
    """Test exit code mapping."""

    @pytest.mark.parametrize("status,fail_on_discrepancy,expected", [
        (RunStatus.CONSISTENT, False, 0),
        (RunStatus.CONSISTENT, True, 0),
        (RunStatus.INCONSISTENT, False, 0),
        (RunStatus.INCONSISTENT, True, 3),
        (RunStatus.INSUFFICIENT_DATA, False, 2),
        (RunStatus.FAILED, False, 1),
    ])
    def test_exit_code(self, status, fail_on_discrepancy, expected):
        """Test the process exit status for each outcome."""
        assert status.exit_code(fail_on_discrepancy) == expected


class TestRunCoordinator:
    """Test suite for RunCoordinator."""

    def test_keyed_scenario_inconsistent(self, log_filter):
        """Test the two-source keyed scenario end to end."""
        sources = {
            "x": replay("x", [(1, 100), (2, 100), (3, 101)]),
            "y": replay("y", [(2, 100), (3, 101), (4, 101)]),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=3)

        with RunContext("run-123"):
            outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.INCONSISTENT
        assert outcome.run_id == "run-123"
        assert outcome.report.window["keys"] == [101]
        assert [(d.identity_key, d.present_in, d.missing_from) for d in outcome.report.discrepancies] == [
            (tx_hash(4), "y", "x")
        ]
        assert outcome.progress == {"x": 3, "y": 3}

    def test_consistent_run(self, log_filter):
        """Test identical feeds give a consistent verdict."""
        events = [(1, 10), (2, 11), (3, 12), (4, 12)]
        sources = {
            "x": replay("x", events),
            "y": replay("y", list(reversed(events))),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=4)

        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.CONSISTENT
        assert outcome.report.consistent
        assert outcome.report.window["keys"] == [11, 12]

    def test_insufficient_data(self, log_filter):
        """Test that no complete key terminates without a report."""
        sources = {
            "x": replay("x", [(1, 1), (2, 1)]),
            "y": replay("y", [(3, 2), (4, 2)]),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=2)

        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.INSUFFICIENT_DATA
        assert outcome.report is None
        assert "larger target count" in outcome.reason
        assert outcome.to_dict()["report"] is None

    def test_flat_mode(self, log_filter):
        """Test a flat run bounded by the overlap window."""
        sources = {
            "a": replay("a", [(n, None) for n in (1, 2, 3, 4)]),
            "b": replay("b", [(n, None) for n in (2, 3, 4, 6)]),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=4, mode="flat")

        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.CONSISTENT
        assert outcome.report.window["first"] == tx_hash(2)
        assert outcome.report.window["last"] == tx_hash(4)
        assert outcome.report.windowed_sizes == {"a": 3, "b": 3}

    def test_transport_failure_is_fatal(self, log_filter):
        """Test that one failing source aborts the run."""
        healthy = SilentSource("y")
        sources = {
            "x": FailingSource("x", payloads=[log_payload(1, block=1)]),
            "y": healthy,
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=5)

        with pytest.raises(TransportFailure, match=r"\[x\]"):
            asyncio.run(coordinator.run())

        assert healthy.unsubscribe_calls == 1

    def test_subscribe_failure_is_fatal(self, log_filter):
        """Test that a failed subscription aborts the run."""
        sources = {
            "x": FailingSource("x", fail_on_subscribe=True),
            "y": SilentSource("y"),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=5)

        with pytest.raises(TransportFailure, match="connection refused"):
            asyncio.run(coordinator.run())

    def test_exhausted_replay_is_fatal(self, log_filter):
        """Test that a source ending before its target fails the run."""
        sources = {
            "x": replay("x", [(1, 1)]),
            "y": SilentSource("y"),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=3)

        with pytest.raises(TransportFailure, match="replay exhausted"):
            asyncio.run(coordinator.run())

    def test_timeout(self, log_filter):
        """Test that the run deadline raises RunTimeout."""
        sources = {"x": SilentSource("x"), "y": SilentSource("y")}
        coordinator = RunCoordinator(sources, log_filter, target_count=1, timeout_seconds=0.05)

        with pytest.raises(RunTimeout, match="did not reach target"):
            asyncio.run(coordinator.run())

        assert all(not listener.done or listener.completion.cancelled() for listener in coordinator.listeners)

    def test_gate_delays_counting(self, log_filter):
        """Test that progress starts only once the quorum shares an event."""
        sources = {
            "x": replay("x", [(n, n) for n in range(1, 7)], delay=0.005),
            "y": replay("y", [(n, n) for n in range(2, 7)], delay=0.01),
        }
        coordinator = RunCoordinator(
            sources, log_filter, target_count=2, gate_quorum=2, trim_tail=True
        )

        outcome = asyncio.run(coordinator.run())

        assert coordinator.accumulator.gate.opened_by == tx_hash(2)
        assert tx_hash(1) in outcome.accumulator["1"]["x"]
        assert outcome.status is RunStatus.CONSISTENT

    def test_records_run_metrics(self, log_filter):
        """Test that run outcomes are exported."""
        registry = CollectorRegistry()
        metrics = FeedMetrics(registry=registry)
        sources = {
            "x": replay("x", [(1, 1), (2, 2)]),
            "y": replay("y", [(1, 1), (2, 2)]),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=2, metrics=metrics)

        asyncio.run(coordinator.run())

        assert registry.get_sample_value(
            'feedrecon_runs_total', {'mode': 'keyed', 'status': 'consistent'}
        ) == 1.0
        assert registry.get_sample_value('feedrecon_agreement_percentage', {'mode': 'keyed'}) == 100.0

    def test_requires_two_sources(self, log_filter):
        """Test that a single source cannot be reconciled."""
        with pytest.raises(ValueError, match="At least two sources"):
            RunCoordinator({"x": SilentSource("x")}, log_filter)

    def test_invalid_mode(self, log_filter):
        """Test mode validation."""
        with pytest.raises(ValueError, match="Invalid mode"):
            RunCoordinator({"x": SilentSource("x"), "y": SilentSource("y")}, log_filter, mode="fuzzy")

    def test_outcome_to_dict(self, log_filter):
        """Test the JSON dump includes the accumulator and report."""
        sources = {
            "x": replay("x", [(1, 1), (2, 2)]),
            "y": replay("y", [(1, 1), (2, 2)]),
        }
        coordinator = RunCoordinator(sources, log_filter, target_count=2)

        data = asyncio.run(coordinator.run()).to_dict()

        assert data["status"] == "consistent"
        assert data["accumulator"]["2"] == {"x": [tx_hash(2)], "y": [tx_hash(2)]}
        assert data["report"]["consistent"] is True
        assert data["duration_seconds"] >= 0
