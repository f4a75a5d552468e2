"""
CCTP Relay Replay Ledger

Tracks digests of verified messages that have already been processed.
Consumption is an atomic insert-if-absent on the storage backend, so two
callers racing on one digest cannot both succeed.

``reserve`` scopes a consumption to a block: if the block raises, the
digest is released again and the ledger is left as it was found.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol, Set

from cctp_relay.hardening import AlreadyReplayed, FieldOutOfRange
from cctp_relay.observability import RelayLayer, get_logger

logger = get_logger("ledger", RelayLayer.LEDGER)

DIGEST_LENGTH = 32


class LedgerStorage(Protocol):
    """Persistent set of consumed digests."""

    def insert_if_absent(self, digest: bytes) -> bool:
        """Insert digest; return False if it was already present."""
        ...

    def remove(self, digest: bytes) -> None:
        ...

    def contains(self, digest: bytes) -> bool:
        ...

    def __len__(self) -> int:
        ...


class InMemoryLedgerStorage:
    """Process-local storage backend."""

    def __init__(self):
        self._digests: Set[bytes] = set()
        self._lock = threading.Lock()

    def insert_if_absent(self, digest: bytes) -> bool:
        with self._lock:
            if digest in self._digests:
                return False
            self._digests.add(digest)
            return True

    def remove(self, digest: bytes) -> None:
        with self._lock:
            self._digests.discard(digest)

    def contains(self, digest: bytes) -> bool:
        with self._lock:
            return digest in self._digests

    def __len__(self) -> int:
        with self._lock:
            return len(self._digests)


_BACKENDS = {
    "memory": InMemoryLedgerStorage,
}


class ReplayLedger:
    """Consume-once registry of message digests."""

    def __init__(self, storage: Optional[LedgerStorage] = None):
        self._storage = storage if storage is not None else InMemoryLedgerStorage()

    @classmethod
    def for_backend(cls, backend: str) -> ReplayLedger:
        try:
            return cls(_BACKENDS[backend]())
        except KeyError:
            raise ValueError(f"Unknown ledger backend: {backend!r}") from None

    @staticmethod
    def _check(digest: bytes) -> bytes:
        if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LENGTH:
            raise FieldOutOfRange(f"Digest must be {DIGEST_LENGTH} bytes")
        return bytes(digest)

    def consume(self, digest: bytes) -> None:
        """Record digest as processed. Raises AlreadyReplayed if it was."""
        digest = self._check(digest)
        if not self._storage.insert_if_absent(digest):
            logger.warning(
                "Replay rejected",
                operation="consume",
                error_code=AlreadyReplayed.code,
                digest=digest.hex(),
            )
            raise AlreadyReplayed(digest)
        logger.debug("Digest consumed", operation="consume", digest=digest.hex())

    @contextmanager
    def reserve(self, digest: bytes) -> Iterator[bytes]:
        """Consume digest for the duration of a block, releasing it on failure."""
        digest = self._check(digest)
        self.consume(digest)
        try:
            yield digest
        except BaseException:
            self._storage.remove(digest)
            logger.debug("Digest released after failure", operation="reserve", digest=digest.hex())
            raise

    def is_consumed(self, digest: bytes) -> bool:
        return self._storage.contains(self._check(digest))

    def __len__(self) -> int:
        return len(self._storage)
