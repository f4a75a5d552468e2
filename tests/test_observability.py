"""Structured logging and audit trail tests."""

import io
import json

import pytest

from cctp_relay.observability import (
    AuditEventType,
    AuditLogger,
    RelayLayer,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    get_logger,
)


@pytest.fixture
def stream():
    buf = io.StringIO()
    configure_logging(level="debug", fmt="json", stream=buf)
    return buf


def lines(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines()]


class TestStructuredLogging:

    def test_json_line_fields(self, stream):
        logger = get_logger("unit", RelayLayer.CODEC)
        with correlation_scope("corr-test"):
            logger.info("Decoded", operation="decode", nonce=7)

        (event,) = lines(stream)
        assert event["message"] == "Decoded"
        assert event["level"] == "info"
        assert event["logger"] == "cctp_relay.codec.unit"
        assert event["layer"] == "codec"
        assert event["operation"] == "decode"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"nonce": 7}

    def test_error_code_and_exception(self, stream):
        logger = get_logger("unit", RelayLayer.LEDGER)
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.error("Failed", error_code="already_replayed", exc_info=True)

        (event,) = lines(stream)
        assert event["error_code"] == "already_replayed"
        assert "RuntimeError: boom" in event["exception"]

    def test_empty_fields_omitted(self, stream):
        get_logger("unit", RelayLayer.RELAY).info("Plain")
        (event,) = lines(stream)
        assert "context" not in event
        assert "error_code" not in event

    def test_level_filtering(self):
        buf = io.StringIO()
        configure_logging(level="warning", stream=buf)
        logger = get_logger("unit", RelayLayer.RELAY)
        logger.info("hidden")
        logger.warning("shown")
        assert [e["message"] for e in lines(buf)] == ["shown"]

    def test_text_format(self):
        buf = io.StringIO()
        configure_logging(level="info", fmt="text", stream=buf)
        get_logger("unit", RelayLayer.RATCHET).info("Upgrade committed")
        assert "[ratchet] Upgrade committed" in buf.getvalue()


class TestCorrelation:

    def test_scope_restores_previous(self):
        with correlation_scope("outer"):
            with correlation_scope("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_generated_ids(self):
        with correlation_scope() as cid:
            assert cid.startswith("corr-")
            assert get_correlation_id() == cid


class TestAuditLogger:

    def test_chain_links_events(self):
        audit = AuditLogger()
        first = audit.record(AuditEventType.MESSAGE_PUBLISHED, "1/0")
        second = audit.record(AuditEventType.TRANSFER_ACCEPTED, "digest", amount="10")

        assert first.previous_event_digest is None
        assert second.previous_event_digest == first.event_digest
        assert audit.verify_chain() == (True, None)

    def test_tampered_details_detected(self):
        audit = AuditLogger()
        audit.record(AuditEventType.MESSAGE_PUBLISHED, "1/0")
        event = audit.record(AuditEventType.TRANSFER_MINTED, "digest", amount="10")
        audit.record(AuditEventType.REPLAY_REJECTED, "digest", outcome="failure")

        event.details["amount"] = "10000"
        assert audit.verify_chain() == (False, 1)

    def test_correlation_id_recorded(self):
        audit = AuditLogger()
        with correlation_scope("corr-audit"):
            event = audit.record(AuditEventType.UPGRADE_COMMITTED, "upgrade-cap-000001")
        assert event.correlation_id == "corr-audit"

    def test_filter_and_export(self):
        audit = AuditLogger()
        audit.record(AuditEventType.MESSAGE_PUBLISHED, "1/0")
        audit.record(AuditEventType.REPLAY_REJECTED, "d", outcome="failure")
        audit.record(AuditEventType.MESSAGE_PUBLISHED, "1/1")

        assert [e.resource_id for e in audit.events(AuditEventType.MESSAGE_PUBLISHED)] == ["1/0", "1/1"]
        exported = audit.export()
        assert len(exported) == 3
        assert exported[1]["event_type"] == "replay_rejected"
        assert exported[1]["outcome"] == "failure"
