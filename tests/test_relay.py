"""TokenRelay facade tests."""

import pytest

from conftest import CALLER, DESTINATION_DOMAIN, RECIPIENT, SOURCE_DOMAIN
from cctp_relay.codec import decode_payload
from cctp_relay.config import ConfigError, get_config
from cctp_relay.hardening import (
    AlreadyReplayed,
    FieldOutOfRange,
    InvalidPayload,
    NonceNotYetClaimed,
    PayloadTooLarge,
    PublishFailed,
)
from cctp_relay.observability import AuditEventType, AuditLogger
from cctp_relay.relay import TokenRelay


class FailingRelay:
    """Message relay that refuses every message."""

    def prepare_outbound_message(self, emitter, nonce, payload):
        raise RuntimeError("relay unavailable")


@pytest.fixture
def audit():
    return AuditLogger()


@pytest.fixture
def sender(source, message_relay, audit):
    get_config().set("relay.local_domain", SOURCE_DOMAIN)
    return TokenRelay(source, message_relay, message_relay.new_emitter(), audit=audit)


@pytest.fixture
def receiver(destination, message_relay, audit):
    get_config().set("relay.local_domain", DESTINATION_DOMAIN)
    return TokenRelay(destination, message_relay, message_relay.new_emitter(), audit=audit)


class TestConstruction:

    def test_local_domain_must_match_config(self, source, message_relay):
        get_config().set("relay.local_domain", 99)
        with pytest.raises(ConfigError):
            TokenRelay(source, message_relay, message_relay.new_emitter())

    def test_default_ledger_from_config(self, sender):
        assert len(sender.ledger) == 0
        assert sender.local_domain == SOURCE_DOMAIN


class TestTransfer:

    def test_transfer_publishes_deposit(self, sender, source, funds, audit):
        ticket = sender.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, b"hook", nonce=9)

        deposit = decode_payload(ticket.payload).deposit()
        assert ticket.nonce == 9
        assert ticket.emitter == sender.emitter.address
        assert deposit.amount == funds.amount
        assert deposit.payload == b"hook"
        assert source.total_burned == funds.amount
        assert len(audit.events(AuditEventType.MESSAGE_PUBLISHED)) == 1

    def test_transfer_with_caller(self, sender, source, funds):
        sender.transfer_tokens_with_payload(
            funds, DESTINATION_DOMAIN, RECIPIENT, b"", destination_caller=CALLER
        )
        assert source.sent_messages()[-1].destination_caller == CALLER

    def test_payload_limit_checked_before_burn(self, sender, source, funds):
        get_config().set("relay.max_aux_payload_bytes", 4)
        with pytest.raises(PayloadTooLarge):
            sender.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, b"12345")
        assert source.total_burned == 0

    def test_relay_nonce_checked_before_burn(self, sender, source, funds):
        with pytest.raises(FieldOutOfRange):
            sender.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, b"", nonce=-1)
        assert source.total_burned == 0

    def test_non_bytes_payload_rejected_before_burn(self, sender, source, funds):
        with pytest.raises(InvalidPayload):
            sender.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, "hook")
        assert source.total_burned == 0
        assert source.sent_messages() == []

    def test_publish_failure_hands_back_live_witness(self, source, message_relay, funds, audit):
        get_config().set("relay.local_domain", SOURCE_DOMAIN)
        emitter = message_relay.new_emitter()
        down = TokenRelay(source, FailingRelay(), emitter, audit=audit)

        with pytest.raises(PublishFailed) as excinfo:
            down.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, b"hook", nonce=3)

        witness = excinfo.value.witness
        assert not witness.consumed
        assert excinfo.value.details["cause"] == "RuntimeError"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert source.total_burned == funds.amount
        assert audit.events(AuditEventType.MESSAGE_PUBLISHED) == []

        # The burned funds can still be published once a relay is reachable
        up = TokenRelay(source, message_relay, emitter, audit=audit)
        ticket = up.publish_witness(witness, b"hook", nonce=3)

        assert witness.consumed
        deposit = decode_payload(ticket.payload).deposit()
        assert deposit.amount == funds.amount
        assert deposit.payload == b"hook"
        assert len(audit.events(AuditEventType.MESSAGE_PUBLISHED)) == 1


class TestRedeem:

    def _send(self, sender, source, message_relay, funds):
        ticket = sender.transfer_tokens_with_payload(funds, DESTINATION_DOMAIN, RECIPIENT, b"hook")
        return source.sent_messages()[-1], message_relay.publish(ticket)

    def test_redeem_after_receive(self, sender, receiver, source, destination, message_relay, funds, audit):
        message, signed = self._send(sender, source, message_relay, funds)
        destination.receive_message(message, caller=RECIPIENT)

        accepted = receiver.redeem(message_relay.verify(signed))

        assert accepted.origin_sender == sender.emitter.address
        assert accepted.deposit.payload == b"hook"
        assert len(audit.events(AuditEventType.TRANSFER_ACCEPTED)) == 1

    def test_redeem_before_receive(self, sender, receiver, source, message_relay, funds):
        _, signed = self._send(sender, source, message_relay, funds)
        with pytest.raises(NonceNotYetClaimed):
            receiver.redeem(message_relay.verify(signed))
        assert len(receiver.ledger) == 0

    def test_replay_audited(self, sender, receiver, source, destination, message_relay, funds, audit):
        message, signed = self._send(sender, source, message_relay, funds)
        destination.receive_message(message, caller=RECIPIENT)
        receiver.redeem(message_relay.verify(signed))

        with pytest.raises(AlreadyReplayed):
            receiver.redeem(message_relay.verify(signed))
        rejected = audit.events(AuditEventType.REPLAY_REJECTED)
        assert len(rejected) == 1
        assert rejected[0].outcome == "failure"

    def test_redeem_and_mint(self, sender, receiver, source, destination, message_relay, funds, audit):
        message, signed = self._send(sender, source, message_relay, funds)
        receipt = destination.receive_message(message, caller=RECIPIENT)

        stamped = receiver.redeem_and_mint(message_relay.verify(signed), receipt)

        assert stamped.amount == funds.amount
        assert destination.balance_of(RECIPIENT) == funds.amount
        assert len(audit.events(AuditEventType.TRANSFER_MINTED)) == 1
        with pytest.raises(AlreadyReplayed):
            receiver.redeem(message_relay.verify(signed))
