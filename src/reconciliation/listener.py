"""
Source Listener for Feed Reconciliation

Adapter between one EventSource and the shared accumulator. Decodes each raw
payload, submits it, and exposes a single-fire completion future that
resolves when the source reaches its target count or rejects on transport
failure.
"""

import asyncio
import logging
from typing import Any, Optional

from src.feeds.base import EventSource, LogFilter, SubscriptionHandle
from src.feeds.payload import LogPayloadDecoder
from src.reconciliation.errors import MalformedPayload, TransportFailure

logger = logging.getLogger(__name__)


class SourceListener:
    """
    Drives one source until it has delivered `target_count` counted events.

    The completion future is created on start() and settles exactly once.
    Events arriving after it settles are ignored.
    """

    def __init__(
        self,
        label: str,
        source: EventSource,
        accumulator,
        log_filter: LogFilter,
        decoder: Optional[LogPayloadDecoder] = None,
        metrics=None
    ):
        """
        Initialize the listener.

        Args:
            label: Source label used for records and progress
            source: Event source to subscribe to
            accumulator: Shared KeyedAccumulator or FlatAccumulator
            log_filter: Filter shared by every source in the run
            decoder: Payload decoder (defaults to one matching the accumulator)
            metrics: Optional FeedMetrics
        """
        self.label = label
        self.source = source
        self.accumulator = accumulator
        self.log_filter = log_filter
        self.decoder = decoder or LogPayloadDecoder(keyed=accumulator.keyed)
        self.metrics = metrics

        self.target_count = accumulator.target_count
        self.progress = 0
        self.received_count = 0
        self.duplicate_count = 0
        self.malformed_count = 0

        self.completion: Optional[asyncio.Future] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._unsubscribe_task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.completion is not None and self.completion.done()

    async def start(self) -> asyncio.Future:
        """
        Subscribe to the source.

        A failure to subscribe rejects the completion future instead of
        raising, so the coordinator sees every failure the same way.

        Returns:
            The completion future
        """
        loop = asyncio.get_running_loop()
        self.completion = loop.create_future()

        logger.info(f"[{self.label}] Subscribing (target_count={self.target_count})")
        try:
            self._handle = await self.source.subscribe(self.log_filter, self._on_event, self._on_error)
        except TransportFailure as e:
            self._reject(e)
        except Exception as e:
            self._reject(TransportFailure(self.label, f"subscribe failed: {e}"))

        return self.completion

    async def stop(self) -> None:
        """Unsubscribe and cancel a still-pending completion."""
        if self._unsubscribe_task is not None:
            await asyncio.gather(self._unsubscribe_task, return_exceptions=True)
        await self._unsubscribe()

        if self.completion is not None and not self.completion.done():
            self.completion.cancel()

    def _on_event(self, payload: Any) -> None:
        self.received_count += 1

        if self.done:
            self._record_metric("ignored")
            return

        try:
            record = self.decoder.decode(payload, self.label)
        except MalformedPayload as e:
            self.malformed_count += 1
            logger.warning(f"Dropping event: {e}")
            self._record_metric("malformed")
            return

        outcome = self.accumulator.submit(record)
        self.progress = outcome.progress

        if not outcome.is_new_for_source:
            self.duplicate_count += 1
            logger.debug(f"[{self.label}] Duplicate {record.identity_key}")
            self._record_metric("duplicate")
            return

        self._record_metric("new")
        if self.metrics is not None:
            self.metrics.update_progress(self.label, self.progress, ready=outcome.crossed_ready_threshold)

        if outcome.crossed_ready_threshold:
            logger.info(
                f"[{self.label}] Reached target of {self.target_count} events "
                f"({self.received_count} received, {self.duplicate_count} duplicates, "
                f"{self.malformed_count} malformed)"
            )
            self._resolve()

    def _on_error(self, error: BaseException) -> None:
        if not isinstance(error, TransportFailure):
            error = TransportFailure(self.label, str(error) or type(error).__name__)
        self._reject(error)

    def _resolve(self) -> None:
        if self.done:
            return
        self.completion.set_result(self.progress)
        self._schedule_unsubscribe()

    def _reject(self, error: TransportFailure) -> None:
        if self.completion is None or self.completion.done():
            logger.debug(f"[{self.label}] Ignoring error after completion: {error}")
            return

        logger.error(f"Listener failed: {error}")
        if self.metrics is not None:
            self.metrics.record_transport_failure(self.label)
        self.completion.set_exception(error)
        self._schedule_unsubscribe()

    def _schedule_unsubscribe(self) -> None:
        if self._handle is not None and self._unsubscribe_task is None:
            self._unsubscribe_task = asyncio.ensure_future(self._unsubscribe())

    async def _unsubscribe(self) -> None:
        if self._handle is None:
            return

        try:
            await self.source.unsubscribe(self._handle)
            logger.debug(f"[{self.label}] Unsubscribed")
        except Exception as e:
            # Unsubscribe is best-effort; the listener is already settled
            logger.warning(f"[{self.label}] Unsubscribe failed: {e}")

    def _record_metric(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_event(self.label, outcome)
