"""
CCTP Relay In-Memory Collaborators

Reference implementations of the burn/mint subsystem, the attested message
relay and the host upgrade permission. They hold all state in process and
are meant for tests and local integration, in the same way a mock chain
adapter stands in for a real node.

The message relay is attested for real: a guardian set of Ed25519 keys
signs each message body and ``verify`` requires a two-thirds quorum of
valid signatures before it hands out a verified message.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Set, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from cctp_relay.config import ConfigManager, get_config
from cctp_relay.hardening import (
    ADDRESS_LENGTH,
    CryptoUtils,
    SingleUse,
    TruncatedBuffer,
    Validators,
)
from cctp_relay.interfaces import (
    MintReceipt,
    OutboundMessageTicket,
    RawBurnRecord,
    RawMessageRecord,
    StampedReceipt,
)
from cctp_relay.ratchet import TrackedDependency

ZERO_ADDRESS = b"\x00" * ADDRESS_LENGTH


class AttestationError(ValueError):
    """Signed message failed relay verification."""


class BurnMintError(ValueError):
    """Burn/mint subsystem rejected an operation."""


# =============================================================================
# BURN/MINT SUBSYSTEM
# =============================================================================

@dataclass(frozen=True)
class Funds:
    """Tokens handed to a burn, owned by ``owner``."""
    owner: bytes
    amount: int


def encode_burn_body(burn: RawBurnRecord) -> bytes:
    return (
        burn.token_address
        + burn.amount.to_bytes(32, "big")
        + burn.burn_source
        + burn.mint_recipient
    )


def decode_burn_body(body: bytes) -> RawBurnRecord:
    if len(body) != 4 * 32:
        raise TruncatedBuffer(f"Burn body must be 128 bytes, got {len(body)}")
    return RawBurnRecord(
        token_address=body[0:32],
        amount=int.from_bytes(body[32:64], "big"),
        burn_source=body[64:96],
        mint_recipient=body[96:128],
    )


class InMemoryBurnMint:
    """
    One domain's token messenger and message transmitter.

    Burns allocate sequential nonces in the local domain. Receiving a burn
    message marks its (source domain, nonce) used and yields a MintReceipt;
    receive_and_mint redeems that receipt exactly once.
    """

    def __init__(self, local_domain: int, token_address: bytes, messenger_address: Optional[bytes] = None):
        self._local_domain = Validators.uint(local_domain, 32, "local_domain")
        self.token_address = Validators.address(token_address, "token_address")
        self.messenger_address = messenger_address or secrets.token_bytes(ADDRESS_LENGTH)
        self._next_nonce = 0
        self._used: Set[Tuple[int, int]] = set()
        self._pending: List[MintReceipt] = []
        self._sent: List[RawMessageRecord] = []
        self._balances: Dict[bytes, int] = {}
        self._burned = 0
        self._lock = threading.RLock()

    def local_domain(self) -> int:
        return self._local_domain

    def burn(
        self,
        funds: Funds,
        destination_domain: int,
        mint_recipient: bytes,
        destination_caller: Optional[bytes] = None,
    ) -> Tuple[RawBurnRecord, RawMessageRecord]:
        if funds.amount <= 0:
            raise BurnMintError("Burn amount must be positive")
        if mint_recipient == ZERO_ADDRESS:
            raise BurnMintError("Mint recipient must be nonzero")
        if destination_caller is not None and destination_caller == ZERO_ADDRESS:
            raise BurnMintError("Destination caller must be nonzero")

        with self._lock:
            nonce = self._next_nonce
            self._next_nonce += 1
            self._burned += funds.amount

        burn = RawBurnRecord(
            token_address=self.token_address,
            amount=funds.amount,
            burn_source=funds.owner,
            mint_recipient=mint_recipient,
        )
        message = RawMessageRecord(
            source_domain=self._local_domain,
            destination_domain=destination_domain,
            nonce=nonce,
            sender=self.messenger_address,
            recipient=self.messenger_address,
            destination_caller=destination_caller or ZERO_ADDRESS,
            message_body=encode_burn_body(burn),
        )
        with self._lock:
            self._sent.append(message)
        return burn, message

    def receive_message(self, message: RawMessageRecord, caller: bytes) -> MintReceipt:
        """Accept a burn message addressed to this domain."""
        if message.destination_domain != self._local_domain:
            raise BurnMintError(
                f"Message for domain {message.destination_domain}, local is {self._local_domain}"
            )
        if message.destination_caller not in (ZERO_ADDRESS, caller):
            raise BurnMintError("Caller not permitted to receive this message")

        key = (message.source_domain, message.nonce)
        with self._lock:
            if key in self._used:
                raise BurnMintError(f"Nonce {message.nonce} from domain {message.source_domain} already used")
            self._used.add(key)
            receipt = MintReceipt(
                source_domain=message.source_domain,
                sender=message.sender,
                recipient=message.recipient,
                message_body=message.message_body,
            )
            self._pending.append(receipt)
        return receipt

    def is_nonce_used(self, source_domain: int, nonce: int) -> bool:
        with self._lock:
            return (source_domain, nonce) in self._used

    def receive_and_mint(self, receipt: MintReceipt) -> StampedReceipt:
        burn = decode_burn_body(receipt.message_body)
        with self._lock:
            for i, pending in enumerate(self._pending):
                if pending is receipt:
                    del self._pending[i]
                    break
            else:
                raise BurnMintError("Receipt is not pending redemption")
            self._balances[burn.mint_recipient] = self._balances.get(burn.mint_recipient, 0) + burn.amount
        return StampedReceipt(
            source_domain=receipt.source_domain,
            token_address=burn.token_address,
            amount=burn.amount,
            mint_recipient=burn.mint_recipient,
        )

    def sent_messages(self) -> List[RawMessageRecord]:
        """Burn messages emitted by this domain, oldest first."""
        with self._lock:
            return list(self._sent)

    def balance_of(self, address: bytes) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    @property
    def total_burned(self) -> int:
        with self._lock:
            return self._burned


# =============================================================================
# ATTESTED MESSAGE RELAY
# =============================================================================

SIGNATURE_LENGTH = 64
_BODY_HEADER_LENGTH = 2 + ADDRESS_LENGTH + 8 + 4


@dataclass(frozen=True)
class EmitterCap:
    """Identity under which a program emits messages."""
    address: bytes


class GuardianSet:
    """Ed25519 signers attesting relayed messages."""

    def __init__(self, size: int = 3, keys: Optional[List[Ed25519PrivateKey]] = None):
        self._keys = keys if keys is not None else [Ed25519PrivateKey.generate() for _ in range(size)]
        self.public_keys: List[Ed25519PublicKey] = [k.public_key() for k in self._keys]

    @property
    def quorum(self) -> int:
        return len(self._keys) * 2 // 3 + 1

    def sign(self, digest: bytes, indices: Optional[List[int]] = None) -> List[Tuple[int, bytes]]:
        indices = range(len(self._keys)) if indices is None else indices
        return [(i, self._keys[i].sign(digest)) for i in indices]


_MESSAGE_KEY = object()


class InMemoryVerifiedMessage(SingleUse):
    """Verified message; its origin info and payload can be taken once."""

    __slots__ = ("_digest", "_origin_chain", "_origin_sender", "_payload", "sequence")

    def __init__(self, key: object, digest: bytes, origin_chain: int,
                 origin_sender: bytes, sequence: int, payload: bytes):
        super().__init__(key, _MESSAGE_KEY)
        self._digest = digest
        self._origin_chain = origin_chain
        self._origin_sender = origin_sender
        self._payload = payload
        self.sequence = sequence

    def digest(self) -> bytes:
        return self._digest

    def take_origin_info_and_payload(self) -> Tuple[int, bytes, bytes]:
        self._consume()
        return self._origin_chain, self._origin_sender, self._payload


class InMemoryMessageRelay:
    """
    Message relay for one chain.

    ``prepare_outbound_message`` builds a ticket; ``publish`` assigns a
    per-emitter sequence and returns the guardian-signed wire message that
    any chain's relay can ``verify``.
    """

    def __init__(self, chain_id: int, guardians: GuardianSet):
        self.chain_id = Validators.uint(chain_id, 16, "chain_id")
        self.guardians = guardians
        self._sequences: Dict[bytes, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, guardians: GuardianSet, config: Optional[ConfigManager] = None) -> InMemoryMessageRelay:
        """Relay for the chain named by relay.relay_chain_id."""
        config = config or get_config()
        return cls(config.get("relay.relay_chain_id"), guardians)

    def new_emitter(self) -> EmitterCap:
        return EmitterCap(secrets.token_bytes(ADDRESS_LENGTH))

    def prepare_outbound_message(self, emitter: EmitterCap, nonce: int, payload: bytes) -> OutboundMessageTicket:
        return OutboundMessageTicket(emitter=emitter.address, nonce=nonce, payload=payload)

    def publish(self, ticket: OutboundMessageTicket, signers: Optional[List[int]] = None) -> bytes:
        with self._lock:
            sequence = self._sequences.get(ticket.emitter, 0)
            self._sequences[ticket.emitter] = sequence + 1

        body = (
            self.chain_id.to_bytes(2, "big")
            + ticket.emitter
            + sequence.to_bytes(8, "big")
            + ticket.nonce.to_bytes(4, "big")
            + ticket.payload
        )
        signatures = self.guardians.sign(CryptoUtils.double_sha256(body), signers)
        header = bytes([len(signatures)]) + b"".join(
            bytes([index]) + sig for index, sig in signatures
        )
        return header + body

    def verify(self, signed: bytes) -> InMemoryVerifiedMessage:
        if not signed:
            raise AttestationError("Empty message")
        count = signed[0]
        offset = 1 + count * (1 + SIGNATURE_LENGTH)
        if len(signed) < offset + _BODY_HEADER_LENGTH:
            raise AttestationError("Message truncated")

        body = signed[offset:]
        digest = CryptoUtils.double_sha256(body)

        valid: Set[int] = set()
        for n in range(count):
            start = 1 + n * (1 + SIGNATURE_LENGTH)
            index = signed[start]
            signature = signed[start + 1:start + 1 + SIGNATURE_LENGTH]
            if index >= len(self.guardians.public_keys) or index in valid:
                raise AttestationError(f"Invalid or duplicate guardian index {index}")
            try:
                self.guardians.public_keys[index].verify(signature, digest)
            except InvalidSignature:
                raise AttestationError(f"Bad signature from guardian {index}") from None
            valid.add(index)

        if len(valid) < self.guardians.quorum:
            raise AttestationError(f"No quorum: {len(valid)} of {self.guardians.quorum} signatures")

        origin_chain = int.from_bytes(body[0:2], "big")
        origin_sender = body[2:2 + ADDRESS_LENGTH]
        sequence = int.from_bytes(body[34:42], "big")
        payload = body[_BODY_HEADER_LENGTH:]
        return InMemoryVerifiedMessage(
            _MESSAGE_KEY, digest, origin_chain, origin_sender, sequence, payload
        )


# =============================================================================
# UPGRADE PERMISSION
# =============================================================================

class UpgradePolicy(IntEnum):
    """Upgrade scopes, most permissive first."""
    COMPATIBLE = 0
    ADDITIVE = 128
    DEP_ONLY = 192


@dataclass(frozen=True)
class UpgradeTicket:
    ticket_id: int
    policy: int
    digest: bytes


@dataclass(frozen=True)
class UpgradeReceipt:
    ticket_id: int


class InMemoryUpgradePermission:
    """Upgrade capability of a deployed package. Versions start at 1."""

    def __init__(self, version: int = 1):
        self._version = version
        self._policy = UpgradePolicy.COMPATIBLE
        self._outstanding: Optional[UpgradeTicket] = None
        self._ticket_ids = 0
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._version

    @property
    def policy(self) -> UpgradePolicy:
        return self._policy

    @property
    def dependency_only(self) -> bool:
        return self._policy == UpgradePolicy.DEP_ONLY

    def restrict_to_dependency_only(self) -> None:
        self._policy = UpgradePolicy.DEP_ONLY

    def authorize(self, policy: int, digest: bytes) -> UpgradeTicket:
        with self._lock:
            if policy < self._policy:
                raise PermissionError(f"Policy {policy} is broader than allowed {int(self._policy)}")
            if self._outstanding is not None:
                raise PermissionError("An upgrade is already authorized")
            self._ticket_ids += 1
            ticket = UpgradeTicket(self._ticket_ids, policy, digest)
            self._outstanding = ticket
            return ticket

    def apply(self, ticket: UpgradeTicket) -> UpgradeReceipt:
        """Host-side upgrade execution."""
        with self._lock:
            if self._outstanding != ticket:
                raise PermissionError("Ticket is not the authorized upgrade")
        return UpgradeReceipt(ticket.ticket_id)

    def commit(self, receipt: UpgradeReceipt) -> None:
        with self._lock:
            if self._outstanding is None or self._outstanding.ticket_id != receipt.ticket_id:
                raise PermissionError("Receipt does not match the authorized upgrade")
            self._outstanding = None
            self._version += 1


class SettableVersionSource:
    """Dependency version that tests move up or down."""

    def __init__(self, version: int = 1):
        self._version = version

    def current_version(self) -> int:
        return self._version

    def set(self, version: int) -> None:
        self._version = version


def dependency_sources(initial: int = 1) -> Dict[TrackedDependency, SettableVersionSource]:
    """One SettableVersionSource per tracked dependency."""
    return {dep: SettableVersionSource(initial) for dep in TrackedDependency}
