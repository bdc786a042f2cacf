"""
Event Records for Feed Reconciliation

Value types shared by the accumulators, listeners and reconciler.
"""

from dataclasses import dataclass
from typing import Optional


def make_source_label(provider: str, transport: str, client: str) -> str:
    """
    Build the label identifying one provider/transport/client combination.

    Args:
        provider: Network provider name (e.g. "infura")
        transport: Transport protocol (e.g. "websocket")
        client: Client implementation name (e.g. "eth_subscribe")

    Returns:
        Label of the form "provider/transport/client"
    """
    parts = [provider, transport, client]
    for part in parts:
        if not part or "/" in part:
            raise ValueError(f"Invalid source label component: {part!r}")
    return "/".join(parts)


@dataclass(frozen=True)
class EventRecord:
    """
    One decoded event occurrence as seen by one source.

    Attributes:
        identity_key: Canonical transaction hash
        source_label: Source that delivered the event
        correlation_key: Block number, or None in flat mode
    """

    identity_key: str
    source_label: str
    correlation_key: Optional[int] = None


@dataclass(frozen=True)
class RecordOutcome:
    """
    Result of submitting one record to an accumulator.

    Attributes:
        is_new_for_source: False when the identity was already recorded
        crossed_ready_threshold: True only on the record that brought the
            source's progress to the target count
        progress: Source progress counter after this record
    """

    is_new_for_source: bool
    crossed_ready_threshold: bool
    progress: int
