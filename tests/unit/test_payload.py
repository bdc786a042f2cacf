"""
Unit tests for feeds payload module.
"""

import json

import pytest

from conftest import log_payload, notification, tx_hash
from src.feeds.payload import LogPayloadDecoder, decode_log_payload
from src.reconciliation.errors import MalformedPayload

LABEL = "infura/websocket/eth_subscribe"


class TestLogPayloadDecoder:
    """Test strict decoding of log payloads."""

    @pytest.fixture
    def decoder(self):
        """Keyed decoder."""
        return LogPayloadDecoder(keyed=True)

    def test_decode_dict(self, decoder):
        """Test decoding a raw log object."""
        record = decoder.decode(log_payload(1, block=0x10), LABEL)

        assert record.identity_key == tx_hash(1)
        assert record.correlation_key == 16
        assert record.source_label == LABEL

    def test_decode_json_text_and_bytes(self, decoder):
        """Test decoding JSON text and bytes."""
        text = json.dumps(log_payload(2, block=5))

        assert decoder.decode(text, LABEL).identity_key == tx_hash(2)
        assert decoder.decode(text.encode(), LABEL).correlation_key == 5

    def test_unwraps_subscription_envelope(self, decoder):
        """Test unwrapping an eth_subscription notification."""
        record = decoder.decode(notification("0xabc", log_payload(3, block=7)), LABEL)

        assert record.identity_key == tx_hash(3)
        assert record.correlation_key == 7

    def test_integer_block_number(self, decoder):
        """Test clients that return block numbers as integers."""
        payload = log_payload(1)
        payload["blockNumber"] = 12345

        assert decoder.decode(payload, LABEL).correlation_key == 12345

    def test_flat_decoder_ignores_block(self):
        """Test that flat decoding does not need a block number."""
        record = decode_log_payload(log_payload(4), LABEL, keyed=False)

        assert record.correlation_key is None
        assert record.identity_key == tx_hash(4)

    @pytest.mark.parametrize("payload,match", [
        ("{not json", "invalid JSON"),
        ([1, 2], "expected an object"),
        ({"method": "eth_subscription", "params": ["bad"]}, "without params object"),
        ({"method": "eth_subscription", "params": {}}, "without a result"),
        ({"blockNumber": "0x1"}, "missing transactionHash"),
        ({"transactionHash": "0x12", "blockNumber": "0x1"}, "32-byte"),
        ({"transactionHash": "0x" + "a" * 64}, "missing blockNumber"),
        ({"transactionHash": "0x" + "a" * 64, "blockNumber": "zz"}, "Invalid correlation key"),
    ])
    def test_malformed_payloads(self, decoder, payload, match):
        """Test that bad payloads fail closed."""
        with pytest.raises(MalformedPayload, match=match) as exc_info:
            decoder.decode(payload, LABEL)

        assert exc_info.value.source_label == LABEL

    def test_removed_log_rejected(self, decoder):
        """Test that reorged logs are not counted."""
        with pytest.raises(MalformedPayload, match="reorganization"):
            decoder.decode(log_payload(1, block=1, removed=True), LABEL)

    def test_error_message_includes_label(self, decoder):
        """Test the error message format."""
        with pytest.raises(MalformedPayload, match=r"\[infura/websocket/eth_subscribe\] malformed payload"):
            decoder.decode({}, LABEL)
