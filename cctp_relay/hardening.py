"""
CCTP Relay Hardening Layer

Error taxonomy, input validation and the thread-safety primitives shared by
every protocol component:

1. Error hierarchy - one exception class per failure mode, stable codes
2. Fixed-width integer and address validation
3. Hashing helpers
4. Single-use capabilities - move-only emulation for witnesses and tokens
5. Atomic counters

Security Model:
    - Every error aborts its enclosing operation; nothing is retried here
    - Capabilities cannot be copied, pickled or constructed by outside code
    - Consumption of a capability is a compare-and-set under a lock

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class RelayError(Exception):
    """Base exception for all relay protocol failures."""

    code = "relay_error"

    def __init__(self, message: str = "", **details: Any):
        self.details: Dict[str, Any] = details
        super().__init__(message or self.code)


class CodecError(RelayError, ValueError):
    """Wire encoding or decoding failed."""
    code = "codec_error"


class InvalidTag(CodecError):
    """Payload envelope is empty, so there is no discriminant to read."""
    code = "invalid_tag"


class TruncatedBuffer(CodecError):
    """Buffer ended before a fixed-width field could be read."""
    code = "truncated_buffer"


class TrailingBytes(CodecError):
    """Bytes remained after the last field was decoded."""
    code = "trailing_bytes"


class InvalidPayload(CodecError):
    """Payload envelope carried an unknown discriminant."""
    code = "invalid_payload"


class PayloadTooLarge(CodecError):
    """Auxiliary payload does not fit its 16-bit length prefix."""
    code = "payload_too_large"


class FieldOutOfRange(CodecError):
    """Integer or address does not fit its fixed wire width."""
    code = "field_out_of_range"


class CorrelationError(RelayError):
    """A received message could not be tied to a real transfer."""
    code = "correlation_error"


class AlreadyReplayed(CorrelationError):
    """Message digest was already consumed."""
    code = "already_replayed"

    def __init__(self, digest: bytes):
        self.digest = digest
        super().__init__(f"Message {digest.hex()} already consumed", digest=digest.hex())


class NonceNotYetClaimed(CorrelationError):
    """The burn/mint subsystem has not redeemed this (domain, nonce) pair."""
    code = "nonce_not_yet_claimed"

    def __init__(self, source_domain: int, nonce: int):
        self.source_domain = source_domain
        self.nonce = nonce
        super().__init__(
            f"Nonce {nonce} from domain {source_domain} not yet claimed",
            source_domain=source_domain,
            nonce=nonce,
        )


class _DomainMismatch(CorrelationError):
    label = "domain"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{self.label} mismatch: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
        )


class SourceDomainMismatch(_DomainMismatch):
    """Decoded source domain disagrees with the receipt."""
    code = "source_domain_mismatch"
    label = "Source domain"


class DestinationDomainMismatch(_DomainMismatch):
    """Decoded destination domain is not the local domain."""
    code = "destination_domain_mismatch"
    label = "Destination domain"


class UpgradeError(RelayError):
    """Dependency upgrade authorization failed."""
    code = "upgrade_error"


class NotInitialVersion(UpgradeError):
    """Upgrade permission has already been used for an upgrade."""
    code = "not_initial_version"

    def __init__(self, version: int):
        self.version = version
        super().__init__(
            f"Upgrade permission must be at its initial version, found {version}",
            version=version,
        )


class DependencyVersionDecreased(UpgradeError):
    """A tracked dependency moved backward."""
    code = "dependency_version_decreased"

    def __init__(self, dependency: str, stored: int, observed: int):
        self.dependency = dependency
        self.stored = stored
        self.observed = observed
        super().__init__(
            f"Dependency {dependency} version decreased: {stored} -> {observed}",
            dependency=dependency,
            stored=stored,
            observed=observed,
        )


class CheckTokenMismatch(UpgradeError):
    """Check token was produced by a different upgrade cap."""
    code = "check_token_mismatch"


class UpgradeCheckPending(UpgradeError):
    """A committed upgrade has not yet passed check_dep_versions."""
    code = "upgrade_check_pending"


class CapabilityError(RelayError):
    """Misuse of a single-use capability."""
    code = "capability_error"


class CapabilityConsumed(CapabilityError):
    """Capability was already consumed."""
    code = "capability_consumed"


class CapabilityForged(CapabilityError):
    """Capability constructed outside its producing function."""
    code = "capability_forged"


class PublishFailed(RelayError):
    """
    Tokens were burned but the Deposit could not be published.

    Carries the still-live witness so the caller can retry through
    TokenRelay.publish_witness.
    """
    code = "publish_failed"

    def __init__(self, witness: Any, cause: BaseException):
        self.witness = witness
        super().__init__(
            f"Burn succeeded but publish failed: {cause}",
            cause=type(cause).__name__,
        )


# =============================================================================
# VALIDATORS
# =============================================================================

ADDRESS_LENGTH = 32


class Validators:
    """Fixed-width field validators. Each returns the value or raises."""

    @staticmethod
    def uint(value: Any, bits: int, field_name: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise FieldOutOfRange(
                f"{field_name}: expected int, got {type(value).__name__}",
                field=field_name,
            )
        if value < 0 or value >= (1 << bits):
            raise FieldOutOfRange(
                f"{field_name}: {value} does not fit in u{bits}",
                field=field_name,
                value=value,
            )
        return value

    @staticmethod
    def address(value: Any, field_name: str) -> bytes:
        if not isinstance(value, (bytes, bytearray)):
            raise FieldOutOfRange(
                f"{field_name}: expected bytes, got {type(value).__name__}",
                field=field_name,
            )
        if len(value) != ADDRESS_LENGTH:
            raise FieldOutOfRange(
                f"{field_name}: address must be {ADDRESS_LENGTH} bytes, got {len(value)}",
                field=field_name,
            )
        return bytes(value)


def external_address(value: Any) -> bytes:
    """
    Normalize an address to the 32-byte generic chain form.

    Accepts raw bytes of at most 32 bytes (left-padded, so 20-byte EVM
    addresses map to their canonical form) or a hex string with optional
    ``0x`` prefix.
    """
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            value = bytes.fromhex(text.zfill(len(text) + len(text) % 2))
        except ValueError as e:
            raise FieldOutOfRange(f"Invalid hex address: {value!r}") from e
    if not isinstance(value, (bytes, bytearray)):
        raise FieldOutOfRange(f"Cannot convert {type(value).__name__} to address")
    if len(value) > ADDRESS_LENGTH:
        raise FieldOutOfRange(f"Address longer than {ADDRESS_LENGTH} bytes: {len(value)}")
    return bytes(value).rjust(ADDRESS_LENGTH, b"\x00")


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Hashing helpers."""

    @staticmethod
    def double_sha256(data: bytes) -> bytes:
        return hashlib.sha256(hashlib.sha256(data).digest()).digest()


# =============================================================================
# SINGLE-USE CAPABILITIES
# =============================================================================

class SingleUse:
    """
    A value that can be consumed exactly once.

    Subclasses pass a module-private key to ``__init__`` so that only the
    module defining the producing function can construct them. Copying and
    pickling are refused, and consumption is an atomic compare-and-set, so
    two threads racing to spend the same capability cannot both succeed.
    """

    __slots__ = ("_consumed", "_consume_lock")

    def __init__(self, key: object, expected_key: object):
        if key is not expected_key:
            raise CapabilityForged(
                f"{type(self).__name__} can only be created by its producing function"
            )
        self._consumed = False
        self._consume_lock = threading.Lock()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def _consume(self) -> None:
        with self._consume_lock:
            if self._consumed:
                raise CapabilityConsumed(f"{type(self).__name__} already consumed")
            self._consumed = True

    @contextmanager
    def _spending(self) -> Iterator[None]:
        """Consume for the duration of a block; a failing block restores it."""
        self._consume()
        try:
            yield
        except BaseException:
            with self._consume_lock:
                self._consumed = False
            raise

    def _require_live(self) -> None:
        if self._consumed:
            raise CapabilityConsumed(f"{type(self).__name__} already consumed")

    def __copy__(self):
        raise CapabilityError(f"{type(self).__name__} cannot be copied")

    def __deepcopy__(self, memo):
        raise CapabilityError(f"{type(self).__name__} cannot be copied")

    def __reduce_ex__(self, protocol):
        raise CapabilityError(f"{type(self).__name__} cannot be serialized")

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "live"
        return f"<{type(self).__name__} {state}>"


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value
