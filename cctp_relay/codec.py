"""
CCTP Relay Wire Codec

Byte-exact encoding of the transfer descriptor carried inside every relayed
message, and of the tagged envelope wrapping it.

Deposit layout (big-endian, no padding):

    ┌───────────────┬───────┬──────┬──────┬───────┬─────────────┬────────────────┬─────┬─────────┐
    │ token_address │amount │ src  │ dst  │ nonce │ burn_source │ mint_recipient │ len │ payload │
    │      32       │  32   │  4   │  4   │   8   │     32      │       32       │  2  │   len   │
    └───────────────┴───────┴──────┴──────┴───────┴─────────────┴────────────────┴─────┴─────────┘

Envelope: 1-byte discriminant, then the variant body. Unknown
discriminants are a hard decode error; there is no default variant.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, Tuple

from cctp_relay.hardening import (
    InvalidPayload,
    InvalidTag,
    PayloadTooLarge,
    TrailingBytes,
    TruncatedBuffer,
    Validators,
)


MAX_AUX_PAYLOAD_LENGTH = (1 << 16) - 1

# (field, width in bytes) in wire order; addresses are raw, the rest unsigned ints
DEPOSIT_LAYOUT: Tuple[Tuple[str, int], ...] = (
    ("token_address", 32),
    ("amount", 32),
    ("source_domain", 4),
    ("destination_domain", 4),
    ("nonce", 8),
    ("burn_source", 32),
    ("mint_recipient", 32),
)
_ADDRESS_FIELDS = frozenset({"token_address", "burn_source", "mint_recipient"})

DEPOSIT_FIXED_LENGTH = sum(width for _, width in DEPOSIT_LAYOUT) + 2


# =============================================================================
# DEPOSIT
# =============================================================================

@dataclass(frozen=True)
class Deposit:
    """
    Canonical transfer descriptor.

    Every field except ``payload`` is copied from the burn that funded the
    transfer; ``payload`` is opaque caller data.
    """
    token_address: bytes
    amount: int
    source_domain: int
    destination_domain: int
    nonce: int
    burn_source: bytes
    mint_recipient: bytes
    payload: bytes = field(default=b"")

    def __post_init__(self):
        for name, width in DEPOSIT_LAYOUT:
            value = getattr(self, name)
            if name in _ADDRESS_FIELDS:
                object.__setattr__(self, name, Validators.address(value, name))
            else:
                Validators.uint(value, width * 8, name)
        if not isinstance(self.payload, (bytes, bytearray)):
            raise InvalidPayload(f"payload must be bytes, got {type(self.payload).__name__}")
        if len(self.payload) > MAX_AUX_PAYLOAD_LENGTH:
            raise PayloadTooLarge(
                f"Auxiliary payload is {len(self.payload)} bytes, limit {MAX_AUX_PAYLOAD_LENGTH}",
                length=len(self.payload),
            )
        object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def digest(self) -> str:
        """SHA-256 of the canonical encoding."""
        return hashlib.sha256(encode_deposit(self)).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_address": "0x" + self.token_address.hex(),
            "amount": str(self.amount),
            "source_domain": self.source_domain,
            "destination_domain": self.destination_domain,
            "nonce": self.nonce,
            "burn_source": "0x" + self.burn_source.hex(),
            "mint_recipient": "0x" + self.mint_recipient.hex(),
            "payload": "0x" + self.payload.hex(),
        }


class _Cursor:
    """Forward-only reader over an immutable buffer."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._offset = 0

    def take(self, n: int, field_name: str) -> bytes:
        end = self._offset + n
        if end > len(self._data):
            raise TruncatedBuffer(
                f"Buffer truncated reading {field_name}: need {n} bytes at offset "
                f"{self._offset}, have {len(self._data) - self._offset}",
                field=field_name,
                offset=self._offset,
            )
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def take_uint(self, n: int, field_name: str) -> int:
        return int.from_bytes(self.take(n, field_name), "big")

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def finish(self) -> None:
        if self.remaining:
            raise TrailingBytes(
                f"{self.remaining} trailing bytes after decode",
                remaining=self.remaining,
            )


def encode_deposit(deposit: Deposit) -> bytes:
    """Serialize a Deposit into its fixed-order wire form."""
    parts = []
    for name, width in DEPOSIT_LAYOUT:
        value = getattr(deposit, name)
        if name in _ADDRESS_FIELDS:
            parts.append(value)
        else:
            parts.append(value.to_bytes(width, "big"))
    parts.append(len(deposit.payload).to_bytes(2, "big"))
    parts.append(deposit.payload)
    return b"".join(parts)


def _read_deposit(cursor: _Cursor) -> Deposit:
    values: Dict[str, Any] = {}
    for name, width in DEPOSIT_LAYOUT:
        if name in _ADDRESS_FIELDS:
            values[name] = cursor.take(width, name)
        else:
            values[name] = cursor.take_uint(width, name)
    length = cursor.take_uint(2, "payload_length")
    values["payload"] = cursor.take(length, "payload")
    return Deposit(**values)


def decode_deposit(data: bytes) -> Deposit:
    """Parse a Deposit. The buffer must be consumed exactly."""
    cursor = _Cursor(data)
    deposit = _read_deposit(cursor)
    cursor.finish()
    return deposit


# =============================================================================
# PAYLOAD ENVELOPE
# =============================================================================

class PayloadKind(IntEnum):
    """Envelope discriminants. New kinds are appended, never renumbered."""
    DEPOSIT = 1


@dataclass(frozen=True)
class Payload:
    """Tagged envelope around one payload variant."""
    kind: PayloadKind
    body: Any

    @classmethod
    def from_deposit(cls, deposit: Deposit) -> Payload:
        return cls(PayloadKind.DEPOSIT, deposit)

    def deposit(self) -> Deposit:
        if self.kind is not PayloadKind.DEPOSIT:
            raise InvalidPayload(f"Payload is {self.kind.name}, not DEPOSIT")
        return self.body


_ENCODERS: Dict[PayloadKind, Callable[[Any], bytes]] = {
    PayloadKind.DEPOSIT: encode_deposit,
}
_READERS: Dict[PayloadKind, Callable[[_Cursor], Any]] = {
    PayloadKind.DEPOSIT: _read_deposit,
}


def encode_payload(payload: Payload) -> bytes:
    """Prefix the variant body with its 1-byte discriminant."""
    kind = payload.kind
    if kind not in _ENCODERS:
        raise InvalidPayload(f"No encoder for payload kind {kind!r}")
    return bytes([int(kind)]) + _ENCODERS[kind](payload.body)


def decode_payload(data: bytes) -> Payload:
    """Read the discriminant and dispatch to the matching variant decoder."""
    cursor = _Cursor(data)
    if cursor.remaining == 0:
        raise InvalidTag("Empty buffer: missing payload discriminant")
    tag = cursor.take_uint(1, "payload_kind")
    try:
        kind = PayloadKind(tag)
    except ValueError:
        raise InvalidPayload(f"Unknown payload kind {tag}", tag=tag) from None
    body = _READERS[kind](cursor)
    cursor.finish()
    return Payload(kind, body)
