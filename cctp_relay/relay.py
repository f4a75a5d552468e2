"""
CCTP Relay Facade

TokenRelay binds one emitter identity, one burn/mint subsystem, one message
relay and one replay ledger, and exposes the three operations an integrating
program needs:

    transfer_tokens_with_payload   burn, then publish a Deposit for the burn
    redeem                         accept a message whose burn was redeemed
    redeem_and_mint                check a message against a receipt and mint

Every call runs under its own correlation ID and leaves an audit record.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Optional

from cctp_relay.config import ConfigError, ConfigManager, get_config
from cctp_relay.correlator import AcceptedTransfer, consume_payload, mint
from cctp_relay.hardening import (
    AlreadyReplayed,
    InvalidPayload,
    PayloadTooLarge,
    PublishFailed,
    Validators,
)
from cctp_relay.interfaces import (
    BurnMintState,
    MessageRelay,
    MintReceipt,
    OutboundMessageTicket,
    StampedReceipt,
    VerifiedMessage,
)
from cctp_relay.ledger import ReplayLedger
from cctp_relay.observability import (
    AuditEventType,
    AuditLogger,
    RelayLayer,
    correlation_scope,
    get_logger,
)
from cctp_relay.witness import BurnWitness, burn, burn_with_caller, publish

logger = get_logger("token_relay", RelayLayer.RELAY)


class TokenRelay:
    """Token transfers with attached payloads over a burn/mint bridge."""

    def __init__(
        self,
        burn_mint: BurnMintState,
        message_relay: MessageRelay,
        emitter: Any,
        ledger: Optional[ReplayLedger] = None,
        config: Optional[ConfigManager] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.config = config or get_config()
        local_domain = self.config.get("relay.local_domain")
        if burn_mint.local_domain() != local_domain:
            raise ConfigError(
                f"Configured local domain {local_domain} does not match "
                f"burn/mint domain {burn_mint.local_domain()}"
            )
        self.burn_mint = burn_mint
        self.message_relay = message_relay
        self.emitter = emitter
        self.ledger = ledger or ReplayLedger.for_backend(self.config.get("ledger.backend"))
        self.audit = audit or AuditLogger()

    @property
    def local_domain(self) -> int:
        return self.burn_mint.local_domain()

    def _check_payload(self, aux_payload: bytes) -> None:
        if not isinstance(aux_payload, (bytes, bytearray)):
            raise InvalidPayload(
                f"Auxiliary payload must be bytes, got {type(aux_payload).__name__}"
            )
        limit = self.config.get("relay.max_aux_payload_bytes")
        if len(aux_payload) > limit:
            raise PayloadTooLarge(
                f"Auxiliary payload is {len(aux_payload)} bytes, configured limit {limit}",
                length=len(aux_payload),
            )

    def transfer_tokens_with_payload(
        self,
        funds: Any,
        destination_domain: int,
        mint_recipient: bytes,
        aux_payload: bytes,
        nonce: int = 0,
        destination_caller: Optional[bytes] = None,
    ) -> OutboundMessageTicket:
        """
        Burn funds and prepare the message describing the burn.

        Everything the Deposit needs is checked before the burn. If the relay
        then refuses the message, PublishFailed carries the live witness so
        the burned funds can still be published with publish_witness.
        """
        self._check_payload(aux_payload)
        Validators.uint(nonce, 32, "nonce")
        with correlation_scope():
            if destination_caller is None:
                witness = burn(self.burn_mint, funds, destination_domain, mint_recipient)
            else:
                witness = burn_with_caller(
                    self.burn_mint, funds, destination_domain, mint_recipient, destination_caller
                )
            try:
                return self.publish_witness(witness, aux_payload, nonce)
            except Exception as e:
                if witness.consumed:
                    raise
                logger.error(
                    "Publish failed after burn",
                    error_code=PublishFailed.code,
                    operation="transfer_tokens_with_payload",
                    exc_info=True,
                )
                raise PublishFailed(witness, e) from e

    def publish_witness(self, witness: BurnWitness, aux_payload: bytes, nonce: int = 0) -> OutboundMessageTicket:
        """Publish a burn witnessed elsewhere through this relay's emitter."""
        self._check_payload(aux_payload)
        message = witness.message_record
        ticket = publish(self.message_relay, self.emitter, nonce, aux_payload, witness)
        self.audit.record(
            AuditEventType.MESSAGE_PUBLISHED,
            f"{message.source_domain}/{message.nonce}",
            destination_domain=message.destination_domain,
            emitter=ticket.emitter.hex(),
        )
        return ticket

    def redeem(self, message: VerifiedMessage) -> AcceptedTransfer:
        """Accept a verified message whose burn has been redeemed."""
        with correlation_scope():
            try:
                accepted = consume_payload(message, self.burn_mint, self.ledger)
            except AlreadyReplayed as e:
                self.audit.record(AuditEventType.REPLAY_REJECTED, e.digest.hex(), outcome="failure")
                raise
            deposit = accepted.deposit
            self.audit.record(
                AuditEventType.TRANSFER_ACCEPTED,
                message.digest().hex(),
                origin_chain=accepted.origin_chain,
                source_domain=deposit.source_domain,
                nonce=deposit.nonce,
                amount=str(deposit.amount),
            )
            return accepted

    def redeem_and_mint(self, message: VerifiedMessage, receipt: MintReceipt) -> StampedReceipt:
        """Check a verified message against a mint receipt and mint in one call."""
        with correlation_scope():
            try:
                stamped = mint(message, receipt, self.burn_mint, self.ledger)
            except AlreadyReplayed as e:
                self.audit.record(AuditEventType.REPLAY_REJECTED, e.digest.hex(), outcome="failure")
                raise
            self.audit.record(
                AuditEventType.TRANSFER_MINTED,
                message.digest().hex(),
                source_domain=stamped.source_domain,
                amount=str(stamped.amount),
                mint_recipient=stamped.mint_recipient.hex(),
            )
            logger.info("Redeemed and minted", operation="redeem_and_mint", amount=str(stamped.amount))
            return stamped
