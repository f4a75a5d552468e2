"""Collaborator interfaces.

The relay core never burns, mints, verifies signatures or applies upgrades
itself. It talks to those subsystems through the protocols below; the
records they return are plain frozen dataclasses so adapters can build them.

See ``cctp_relay.adapters`` for in-memory implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple


# =============================================================================
# BURN/MINT SUBSYSTEM
# =============================================================================

@dataclass(frozen=True)
class RawBurnRecord:
    """Burn message body produced by the burn/mint subsystem."""
    token_address: bytes
    amount: int
    burn_source: bytes
    mint_recipient: bytes


@dataclass(frozen=True)
class RawMessageRecord:
    """Transport metadata produced alongside a burn."""
    source_domain: int
    destination_domain: int
    nonce: int
    sender: bytes
    recipient: bytes
    destination_caller: bytes
    message_body: bytes = b""


@dataclass(frozen=True)
class MintReceipt:
    """
    Receipt for a received burn message, before minting.

    The burn/mint subsystem exposes the claimed source domain but not the
    nonce, so correlation on the mint path cannot compare nonces.
    """
    source_domain: int
    sender: bytes
    recipient: bytes
    message_body: bytes


@dataclass(frozen=True)
class StampedReceipt:
    """Proof that a receipt was redeemed and tokens minted."""
    source_domain: int
    token_address: bytes
    amount: int
    mint_recipient: bytes


class BurnMintState(Protocol):
    """Token burn/mint subsystem."""

    def local_domain(self) -> int:
        ...

    def burn(
        self,
        funds: Any,
        destination_domain: int,
        mint_recipient: bytes,
        destination_caller: Optional[bytes] = None,
    ) -> Tuple[RawBurnRecord, RawMessageRecord]:
        ...

    def is_nonce_used(self, source_domain: int, nonce: int) -> bool:
        ...

    def receive_and_mint(self, receipt: MintReceipt) -> StampedReceipt:
        ...


# =============================================================================
# MESSAGE RELAY SUBSYSTEM
# =============================================================================

@dataclass(frozen=True)
class OutboundMessageTicket:
    """A prepared outbound message awaiting publication by the relay."""
    emitter: bytes
    nonce: int
    payload: bytes


class MessageRelay(Protocol):
    """Attested cross-chain message transport."""

    def prepare_outbound_message(
        self, emitter: Any, nonce: int, payload: bytes
    ) -> OutboundMessageTicket:
        ...


class VerifiedMessage(Protocol):
    """A message whose attestation the relay has already checked."""

    def digest(self) -> bytes:
        ...

    def take_origin_info_and_payload(self) -> Tuple[int, bytes, bytes]:
        """Return (origin chain, origin sender, payload). Callable once."""
        ...


# =============================================================================
# UPGRADE AUTHORIZATION
# =============================================================================

class UpgradePermission(Protocol):
    """Host runtime's upgrade-authorization capability."""

    @property
    def version(self) -> int:
        ...

    @property
    def dependency_only(self) -> bool:
        ...

    def restrict_to_dependency_only(self) -> None:
        ...

    def authorize(self, policy: int, digest: bytes) -> Any:
        ...

    def commit(self, receipt: Any) -> None:
        ...


class VersionSource(Protocol):
    """Reports the linked version of one dependency module."""

    def current_version(self) -> int:
        ...
