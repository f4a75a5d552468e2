"""
Wire codec tests: Deposit layout, payload envelope, and decode failures.

Run with: pytest tests/test_codec.py -v
"""

import hashlib

import pytest

import cctp_relay
from cctp_relay.codec import (
    DEPOSIT_FIXED_LENGTH,
    MAX_AUX_PAYLOAD_LENGTH,
    Deposit,
    Payload,
    PayloadKind,
    decode_deposit,
    decode_payload,
    encode_deposit,
    encode_payload,
)
from cctp_relay.hardening import (
    CodecError,
    FieldOutOfRange,
    InvalidPayload,
    InvalidTag,
    PayloadTooLarge,
    TrailingBytes,
    TruncatedBuffer,
    external_address,
)


def example_deposit(**overrides) -> Deposit:
    fields = dict(
        token_address=b"\x01" * 32,
        amount=1342523,
        source_domain=1,
        destination_domain=2,
        nonce=12345,
        burn_source=b"\x02" * 32,
        mint_recipient=b"\x03" * 32,
        payload=b"Test payload",
    )
    fields.update(overrides)
    return Deposit(**fields)


class TestDepositEncoding:
    """Fixed-order, big-endian Deposit layout."""

    def test_example_encodes_to_158_bytes(self):
        encoded = encode_deposit(example_deposit())
        assert len(encoded) == 158

    def test_field_offsets(self):
        encoded = encode_deposit(example_deposit())
        assert encoded[0:32] == b"\x01" * 32
        assert encoded[32:64] == (1342523).to_bytes(32, "big")
        assert encoded[64:68] == b"\x00\x00\x00\x01"
        assert encoded[68:72] == b"\x00\x00\x00\x02"
        assert encoded[72:80] == (12345).to_bytes(8, "big")
        assert encoded[80:112] == b"\x02" * 32
        assert encoded[112:144] == b"\x03" * 32
        assert encoded[144:146] == b"\x00\x0c"
        assert encoded[146:] == b"Test payload"

    def test_fixed_length_constant(self):
        assert DEPOSIT_FIXED_LENGTH == cctp_relay.DEPOSIT_FIXED_LENGTH == 146
        assert len(encode_deposit(example_deposit(payload=b""))) == DEPOSIT_FIXED_LENGTH

    def test_decode_reproduces_fields(self):
        deposit = example_deposit()
        decoded = decode_deposit(encode_deposit(deposit))
        assert decoded == deposit
        assert decoded.payload == b"Test payload"

    def test_round_trip_at_field_limits(self):
        deposit = example_deposit(
            amount=2**256 - 1,
            source_domain=2**32 - 1,
            destination_domain=0,
            nonce=2**64 - 1,
            payload=b"\xff" * MAX_AUX_PAYLOAD_LENGTH,
        )
        assert decode_deposit(encode_deposit(deposit)) == deposit

    def test_digest_is_sha256_of_encoding(self):
        deposit = example_deposit()
        assert deposit.digest == hashlib.sha256(encode_deposit(deposit)).hexdigest()

    def test_to_dict_renders_hex(self):
        d = example_deposit().to_dict()
        assert d["token_address"] == "0x" + "01" * 32
        assert d["amount"] == "1342523"
        assert d["nonce"] == 12345
        assert d["payload"] == "0x" + b"Test payload".hex()


class TestDepositDecodeFailures:
    """Malformed buffers never produce a Deposit."""

    def test_trailing_bytes(self):
        encoded = encode_deposit(example_deposit())
        with pytest.raises(TrailingBytes):
            decode_deposit(encoded + b"\x00")

    def test_truncated_fixed_field(self):
        encoded = encode_deposit(example_deposit())
        with pytest.raises(TruncatedBuffer):
            decode_deposit(encoded[:50])

    def test_truncated_payload(self):
        encoded = encode_deposit(example_deposit())
        with pytest.raises(TruncatedBuffer):
            decode_deposit(encoded[:-1])

    def test_empty_buffer(self):
        with pytest.raises(TruncatedBuffer):
            decode_deposit(b"")

    def test_codec_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode_deposit(b"\x00")
        assert issubclass(TrailingBytes, CodecError)


class TestDepositValidation:
    """Out-of-range values are rejected at construction."""

    @pytest.mark.parametrize("field_name,value", [
        ("amount", 2**256),
        ("amount", -1),
        ("source_domain", 2**32),
        ("destination_domain", -1),
        ("nonce", 2**64),
        ("nonce", True),
    ])
    def test_integer_out_of_range(self, field_name, value):
        with pytest.raises(FieldOutOfRange):
            example_deposit(**{field_name: value})

    def test_short_address_rejected(self):
        with pytest.raises(FieldOutOfRange):
            example_deposit(mint_recipient=b"\x03" * 20)

    def test_oversized_payload_rejected(self):
        with pytest.raises(PayloadTooLarge):
            example_deposit(payload=b"\x00" * (MAX_AUX_PAYLOAD_LENGTH + 1))


class TestPayloadEnvelope:
    """Tagged envelope around Deposit."""

    def test_envelope_prefixes_tag(self):
        encoded = encode_payload(Payload.from_deposit(example_deposit()))
        assert encoded[0] == PayloadKind.DEPOSIT == 1
        assert len(encoded) == 159
        assert encoded[1:] == encode_deposit(example_deposit())

    def test_envelope_round_trip(self):
        deposit = example_deposit()
        payload = decode_payload(encode_payload(Payload.from_deposit(deposit)))
        assert payload.kind is PayloadKind.DEPOSIT
        assert payload.deposit() == deposit

    @pytest.mark.parametrize("tag", [0, 2, 255])
    def test_unknown_tag_is_invalid_payload(self, tag):
        body = encode_deposit(example_deposit())
        with pytest.raises(InvalidPayload):
            decode_payload(bytes([tag]) + body)

    def test_empty_envelope_is_invalid_tag(self):
        with pytest.raises(InvalidTag):
            decode_payload(b"")

    def test_trailing_bytes_after_envelope(self):
        encoded = encode_payload(Payload.from_deposit(example_deposit()))
        with pytest.raises(TrailingBytes):
            decode_payload(encoded + b"\x00\x00")

    def test_tag_only_is_truncated(self):
        with pytest.raises(TruncatedBuffer):
            decode_payload(b"\x01")


class TestExternalAddress:
    """32-byte generic chain addresses."""

    def test_evm_address_left_padded(self):
        evm = bytes(range(20))
        assert external_address(evm) == b"\x00" * 12 + evm

    def test_hex_string(self):
        assert external_address("0xabc") == b"\x00" * 30 + b"\x0a\xbc"
        assert external_address("03" * 32) == b"\x03" * 32

    def test_too_long(self):
        with pytest.raises(FieldOutOfRange):
            external_address(b"\x00" * 33)

    def test_bad_hex(self):
        with pytest.raises(FieldOutOfRange):
            external_address("0xzz")
