"""
CCTP Relay Burn Witness & Publish Protocol

A BurnWitness is the only evidence downstream code needs that a burn
happened. It is produced by ``burn`` / ``burn_with_caller`` and consumed by
``publish``; nothing else can create or spend one.

    burn_mint.burn(...) ──▶ BurnWitness ──▶ publish(...) ──▶ OutboundMessageTicket
                              (live)         (consumed)

Every field of the published Deposit except the auxiliary payload is copied
from the witness, so a caller cannot choose the amount, domains, nonce or
recipient of an outbound transfer.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Any

from cctp_relay.codec import Deposit, Payload, encode_payload
from cctp_relay.hardening import SingleUse, Validators
from cctp_relay.interfaces import (
    BurnMintState,
    MessageRelay,
    OutboundMessageTicket,
    RawBurnRecord,
    RawMessageRecord,
)
from cctp_relay.observability import RelayLayer, get_logger

logger = get_logger("witness", RelayLayer.WITNESS)

# Only this module holds the key BurnWitness.__init__ checks for.
_WITNESS_KEY = object()


class BurnWitness(SingleUse):
    """Single-use proof that a burn occurred."""

    __slots__ = ("_burn", "_message")

    def __init__(self, key: object, burn: RawBurnRecord, message: RawMessageRecord):
        super().__init__(key, _WITNESS_KEY)
        self._burn = burn
        self._message = message

    @property
    def burn_record(self) -> RawBurnRecord:
        self._require_live()
        return self._burn

    @property
    def message_record(self) -> RawMessageRecord:
        self._require_live()
        return self._message


def _witness(result: Any) -> BurnWitness:
    burn, message = result
    logger.info(
        "Burn witnessed",
        operation="burn",
        source_domain=message.source_domain,
        destination_domain=message.destination_domain,
        nonce=message.nonce,
        amount=str(burn.amount),
    )
    return BurnWitness(_WITNESS_KEY, burn, message)


def burn(
    burn_mint: BurnMintState,
    funds: Any,
    destination_domain: int,
    mint_recipient: bytes,
) -> BurnWitness:
    """Burn funds for minting on destination_domain; anyone may redeem."""
    Validators.uint(destination_domain, 32, "destination_domain")
    Validators.address(mint_recipient, "mint_recipient")
    return _witness(burn_mint.burn(funds, destination_domain, mint_recipient))


def burn_with_caller(
    burn_mint: BurnMintState,
    funds: Any,
    destination_domain: int,
    mint_recipient: bytes,
    destination_caller: bytes,
) -> BurnWitness:
    """Burn funds; only destination_caller may redeem on the destination."""
    Validators.uint(destination_domain, 32, "destination_domain")
    Validators.address(mint_recipient, "mint_recipient")
    Validators.address(destination_caller, "destination_caller")
    return _witness(
        burn_mint.burn(funds, destination_domain, mint_recipient, destination_caller)
    )


def deposit_from_witness(witness: BurnWitness, aux_payload: bytes) -> Deposit:
    """Build the Deposit a witness authorizes, without consuming it."""
    burn_record = witness.burn_record
    message = witness.message_record
    return Deposit(
        token_address=burn_record.token_address,
        amount=burn_record.amount,
        source_domain=message.source_domain,
        destination_domain=message.destination_domain,
        nonce=message.nonce,
        burn_source=burn_record.burn_source,
        mint_recipient=burn_record.mint_recipient,
        payload=aux_payload,
    )


def publish(
    relay: MessageRelay,
    emitter: Any,
    nonce: int,
    aux_payload: bytes,
    witness: BurnWitness,
) -> OutboundMessageTicket:
    """
    Spend a witness to prepare the outbound message for its burn.

    The witness is consumed only if the relay accepts the message; a failure
    anywhere leaves it live.
    """
    Validators.uint(nonce, 32, "nonce")
    deposit = deposit_from_witness(witness, aux_payload)
    encoded = encode_payload(Payload.from_deposit(deposit))

    with witness._spending():
        ticket = relay.prepare_outbound_message(emitter, nonce, encoded)

    logger.info(
        "Deposit published",
        operation="publish",
        source_domain=deposit.source_domain,
        destination_domain=deposit.destination_domain,
        nonce=deposit.nonce,
        payload_bytes=len(deposit.payload),
    )
    return ticket
