"""
CCTP Relay Transfer Correlator

Authenticates a received message against burn/mint state without
re-verifying its attestation.

Redeem-first flow (consume_payload):

    verified message ──▶ ledger.reserve(digest) ──▶ decode Deposit
                                                        │
                     burn_mint.is_nonce_used(src, nonce)◀┘
                                 │
                                 ▼
                 (origin chain, origin sender, Deposit)

The burn/mint subsystem cannot restrict redemption to a calling program, so
redemption and message consumption are decoupled. Once the (source domain,
nonce) pair is known to be redeemed, the message's embedded fields can be
trusted: that pair is unique and reachable through exactly one transfer.

Combined flow (mint) checks domains against a receipt and mints in the same
call. The receipt does not expose its nonce, so this path cannot compare
nonces and is strictly weaker on nonce correlation than consume_payload.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import NamedTuple, Optional, Tuple

from cctp_relay.codec import Deposit, decode_payload
from cctp_relay.hardening import (
    DestinationDomainMismatch,
    NonceNotYetClaimed,
    SourceDomainMismatch,
)
from cctp_relay.interfaces import BurnMintState, MintReceipt, StampedReceipt, VerifiedMessage
from cctp_relay.ledger import ReplayLedger
from cctp_relay.observability import RelayLayer, get_logger

logger = get_logger("correlator", RelayLayer.CORRELATOR)


class AcceptedTransfer(NamedTuple):
    """
    A message accepted as a real transfer.

    The caller still decides whether it trusts origin_sender on
    origin_chain; that check is not made here.
    """
    origin_chain: int
    origin_sender: bytes
    deposit: Deposit


def _open(message: VerifiedMessage) -> Tuple[int, bytes, Deposit]:
    origin_chain, origin_sender, raw = message.take_origin_info_and_payload()
    deposit = decode_payload(raw).deposit()
    return origin_chain, origin_sender, deposit


def consume_payload(
    message: VerifiedMessage,
    burn_mint: BurnMintState,
    ledger: ReplayLedger,
) -> AcceptedTransfer:
    """
    Accept a verified message whose burn has already been redeemed.

    Raises:
        AlreadyReplayed: the message digest was consumed before
        CodecError: the payload is not a well-formed Deposit envelope
        NonceNotYetClaimed: the burn/mint subsystem has not redeemed the
            decoded (source domain, nonce)

    On any failure the digest is released, so the message can be
    resubmitted once its burn settles.
    """
    digest = message.digest()
    with ledger.reserve(digest):
        origin_chain, origin_sender, deposit = _open(message)

        if not burn_mint.is_nonce_used(deposit.source_domain, deposit.nonce):
            logger.info(
                "Transfer not yet redeemed",
                operation="consume_payload",
                error_code=NonceNotYetClaimed.code,
                source_domain=deposit.source_domain,
                nonce=deposit.nonce,
            )
            raise NonceNotYetClaimed(deposit.source_domain, deposit.nonce)

    logger.info(
        "Transfer accepted",
        operation="consume_payload",
        digest=digest.hex(),
        origin_chain=origin_chain,
        source_domain=deposit.source_domain,
        nonce=deposit.nonce,
    )
    return AcceptedTransfer(origin_chain, origin_sender, deposit)


def mint(
    message: VerifiedMessage,
    receipt: MintReceipt,
    burn_mint: BurnMintState,
    ledger: Optional[ReplayLedger] = None,
) -> StampedReceipt:
    """
    Check a verified message against a mint receipt, then redeem it.

    The decoded source domain must equal the receipt's and the decoded
    destination domain must be the local domain. Nonces are not compared.
    When a ledger is given the message digest is consumed as well.
    """
    guard = ledger.reserve(message.digest()) if ledger is not None else nullcontext()
    with guard:
        _, _, deposit = _open(message)

        if deposit.source_domain != receipt.source_domain:
            raise SourceDomainMismatch(receipt.source_domain, deposit.source_domain)

        local_domain = burn_mint.local_domain()
        if deposit.destination_domain != local_domain:
            raise DestinationDomainMismatch(local_domain, deposit.destination_domain)

        stamped = burn_mint.receive_and_mint(receipt)

    logger.info(
        "Transfer minted",
        operation="mint",
        source_domain=deposit.source_domain,
        nonce=deposit.nonce,
        amount=str(stamped.amount),
    )
    return stamped
