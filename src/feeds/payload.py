"""
Log Payload Decoder

Strict decode step at the listener boundary. Turns a raw payload from any
client into an EventRecord or raises MalformedPayload; nothing undefined is
allowed past this point.
"""

import json
import logging
from typing import Any, Dict, Optional

from src.reconciliation.comparer import KeyNormalizer
from src.reconciliation.errors import MalformedPayload
from src.reconciliation.records import EventRecord

logger = logging.getLogger(__name__)


class LogPayloadDecoder:
    """
    Decodes Ethereum log payloads into EventRecords.

    Accepts JSON text or dicts, and unwraps eth_subscription notification
    envelopes. Requires `transactionHash`, plus `blockNumber` when keyed.
    """

    def __init__(self, keyed: bool = True, normalizer: Optional[KeyNormalizer] = None):
        """
        Initialize the decoder.

        Args:
            keyed: Whether a block number is required
            normalizer: Key normalizer for hashes and block numbers
        """
        self.keyed = keyed
        self.normalizer = normalizer or KeyNormalizer()

    def decode(self, payload: Any, source_label: str) -> EventRecord:
        """
        Decode one payload.

        Args:
            payload: Raw payload from the source
            source_label: Source that delivered it

        Returns:
            EventRecord

        Raises:
            MalformedPayload: If the payload cannot be decoded
        """
        log = self._unwrap(payload, source_label)

        if log.get("removed") is True:
            raise MalformedPayload(source_label, "log removed by chain reorganization", payload)

        if "transactionHash" not in log:
            raise MalformedPayload(
                source_label,
                f"missing transactionHash. Available fields: {sorted(log.keys())}",
                payload
            )

        try:
            identity_key = self.normalizer.normalize_identity(log["transactionHash"])
        except ValueError as e:
            raise MalformedPayload(source_label, str(e), payload) from e

        correlation_key = None
        if self.keyed:
            if "blockNumber" not in log:
                raise MalformedPayload(
                    source_label,
                    f"missing blockNumber. Available fields: {sorted(log.keys())}",
                    payload
                )
            try:
                correlation_key = self.normalizer.normalize_correlation(log["blockNumber"])
            except ValueError as e:
                raise MalformedPayload(source_label, str(e), payload) from e

        return EventRecord(
            identity_key=identity_key,
            source_label=source_label,
            correlation_key=correlation_key
        )

    def _unwrap(self, payload: Any, source_label: str) -> Dict[str, Any]:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")

        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise MalformedPayload(source_label, f"invalid JSON: {e}", payload) from e

        if not isinstance(payload, dict):
            raise MalformedPayload(
                source_label,
                f"expected an object, got {type(payload).__name__}",
                payload
            )

        if payload.get("method") == "eth_subscription":
            params = payload.get("params")
            if not isinstance(params, dict):
                raise MalformedPayload(source_label, "subscription notification without params object", payload)
            result = params.get("result")
            if not isinstance(result, dict):
                raise MalformedPayload(source_label, "subscription notification without a result", payload)
            return result

        return payload


def decode_log_payload(payload: Any, source_label: str, keyed: bool = True) -> EventRecord:
    """
    Decode one log payload with the default normalizer.

    Args:
        payload: Raw payload (JSON text, bytes or dict)
        source_label: Source that delivered it
        keyed: Whether a block number is required

    Returns:
        EventRecord

    Raises:
        MalformedPayload: If the payload cannot be decoded
    """
    return LogPayloadDecoder(keyed=keyed).decode(payload, source_label)
