"""
Prometheus Metrics for Feed Reconciliation

Custom metrics for tracking event ingestion per source, listener progress,
and reconciliation results. Metrics can be served over HTTP for scraping or
pushed to a Pushgateway at the end of a run.
"""

import logging
from typing import Dict, Optional
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    push_to_gateway,
    start_http_server,
)

logger = logging.getLogger(__name__)

EVENT_OUTCOMES = ("new", "duplicate", "malformed", "ignored")


class IngestionMetrics:
    """Prometheus metrics for events received from each source."""

    def __init__(self, registry: CollectorRegistry):
        """
        Initialize ingestion metrics.

        Args:
            registry: Registry the metrics are registered in
        """
        self.events_received_total = Counter(
            'feedrecon_events_received_total',
            'Total events received by source and outcome',
            ['source', 'outcome'],
            registry=registry
        )

        self.source_progress = Gauge(
            'feedrecon_source_progress',
            'Distinct events counted toward the target per source',
            ['source'],
            registry=registry
        )

        self.source_ready = Gauge(
            'feedrecon_source_ready',
            'Whether a source reached its target (1=ready, 0=collecting)',
            ['source'],
            registry=registry
        )

        self.transport_failures_total = Counter(
            'feedrecon_transport_failures_total',
            'Total fatal transport failures by source',
            ['source'],
            registry=registry
        )

    def record_event(self, source: str, outcome: str) -> None:
        """
        Record one received event.

        Args:
            source: Source label
            outcome: One of new/duplicate/malformed/ignored
        """
        if outcome not in EVENT_OUTCOMES:
            raise ValueError(f"Invalid event outcome: {outcome}. Must be one of {list(EVENT_OUTCOMES)}")

        self.events_received_total.labels(source=source, outcome=outcome).inc()

    def update_progress(self, source: str, progress: int, ready: bool = False) -> None:
        """Update a source's progress counter and readiness."""
        self.source_progress.labels(source=source).set(progress)
        self.source_ready.labels(source=source).set(1 if ready else 0)

    def record_transport_failure(self, source: str) -> None:
        """Record a fatal transport failure."""
        self.transport_failures_total.labels(source=source).inc()


class ReconciliationMetrics:
    """Prometheus metrics for reconciliation runs."""

    def __init__(self, registry: CollectorRegistry):
        """
        Initialize reconciliation metrics.

        Args:
            registry: Registry the metrics are registered in
        """
        self.runs_total = Counter(
            'feedrecon_runs_total',
            'Total number of reconciliation runs',
            ['mode', 'status'],
            registry=registry
        )

        self.run_duration_seconds = Histogram(
            'feedrecon_run_duration_seconds',
            'Duration of reconciliation runs in seconds',
            ['mode'],
            buckets=[10, 30, 60, 120, 300, 600, 1800, 3600, 7200],
            registry=registry
        )

        self.window_size = Gauge(
            'feedrecon_window_size',
            'Correlation keys (keyed) or events (flat) in the comparison window',
            ['mode'],
            registry=registry
        )

        self.missing_events = Gauge(
            'feedrecon_missing_events',
            'Events delivered by one source but missing from another in the last run',
            ['present_in', 'missing_from'],
            registry=registry
        )

        self.agreement_percentage = Gauge(
            'feedrecon_agreement_percentage',
            'Percentage of windowed events delivered by every source (0-100)',
            ['mode'],
            registry=registry
        )

    def record_run(
        self,
        mode: str,
        status: str,
        duration_seconds: float,
        report=None
    ) -> None:
        """
        Record a finished reconciliation run.

        Args:
            mode: keyed or flat
            status: Run status value
            duration_seconds: Duration in seconds
            report: ReconciliationReport, if comparison ran
        """
        self.runs_total.labels(mode=mode, status=status).inc()
        self.run_duration_seconds.labels(mode=mode).observe(duration_seconds)

        if report is None:
            return

        for (present_in, missing_from), count in report.missing_counts.items():
            self.missing_events.labels(present_in=present_in, missing_from=missing_from).set(count)

        if report.mode == "keyed":
            self.window_size.labels(mode=mode).set(len(report.window.get("keys", [])))
        else:
            self.window_size.labels(mode=mode).set(report.event_count)

        self.agreement_percentage.labels(mode=mode).set(report.agreement_percentage)

        logger.debug(
            f"Recorded run metrics: mode={mode}, status={status}, "
            f"duration={duration_seconds:.2f}s, discrepancies={report.discrepancy_count}"
        )


class FeedMetrics:
    """
    Main metrics collector for feed reconciliation.

    Combines all metric categories in one registry and provides exposition.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector.

        Args:
            registry: Prometheus registry (a new one is created if not provided)
        """
        self.registry = registry or CollectorRegistry()
        self.ingestion = IngestionMetrics(self.registry)
        self.reconciliation = ReconciliationMetrics(self.registry)

        self.info = Info('feedrecon', 'Feed reconciliation information', registry=self.registry)
        self.info.info({'version': '1.0.0', 'engine': 'multi-source-set-reconciliation'})

        logger.debug("FeedMetrics initialized")

    def start_server(self, port: int) -> None:
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {port}")
            else:
                raise

    def push(self, gateway_url: str, job_name: str, grouping_key: Optional[Dict[str, str]] = None) -> None:
        """
        Push metrics to Prometheus Pushgateway.

        Args:
            gateway_url: Pushgateway URL
            job_name: Job name for metrics
            grouping_key: Optional grouping key labels

        Raises:
            Exception: If push fails
        """
        try:
            push_to_gateway(
                gateway_url,
                job=job_name,
                registry=self.registry,
                grouping_key=grouping_key or {}
            )
            logger.info(f"Pushed metrics to gateway: {gateway_url}")
        except Exception as e:
            logger.error(f"Failed to push metrics to gateway: {e}")
            raise

    def record_event(self, source: str, outcome: str) -> None:
        """Record received event (delegates to IngestionMetrics)."""
        self.ingestion.record_event(source, outcome)

    def update_progress(self, source: str, progress: int, ready: bool = False) -> None:
        """Update source progress (delegates to IngestionMetrics)."""
        self.ingestion.update_progress(source, progress, ready)

    def record_transport_failure(self, source: str) -> None:
        """Record transport failure (delegates to IngestionMetrics)."""
        self.ingestion.record_transport_failure(source)

    def record_run(self, **kwargs) -> None:
        """Record reconciliation run (delegates to ReconciliationMetrics)."""
        self.reconciliation.record_run(**kwargs)
