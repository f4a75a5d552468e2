"""
CCTP Relay Observability

Structured logging and a tamper-evident audit trail.

    ┌─────────────────────────────────────────────────────────┐
    │                 Protocol components                     │
    │  logger.info("msg", nonce=n)   audit.record(event)      │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │              RelayLogger / AuditLogger                  │
    │     correlation IDs, layer tagging, hash chaining       │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │        StructuredHandler (JSON lines) │ text handler    │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import hashlib
import json
import logging
import sys
import threading
import traceback
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

ROOT_LOGGER_NAME = "cctp_relay"


class RelayLayer(Enum):
    """Protocol layers for log categorization."""
    CODEC = "codec"
    WITNESS = "witness"
    CORRELATOR = "correlator"
    RATCHET = "ratchet"
    LEDGER = "ledger"
    RELAY = "relay"
    CONFIG = "config"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs one JSON object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """Install a single handler on the package root logger."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(layer)s] %(message)s"
        ))
    root.addHandler(handler)
    return root


class RelayLogger:
    """
    Structured logger for relay components.

    Records carry the layer, the operation name, an optional error code and
    arbitrary keyword context; the handler adds the correlation ID.
    """

    def __init__(self, name: str, layer: RelayLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)


def get_logger(name: str, layer: RelayLayer) -> RelayLogger:
    """Get a logger for a relay component."""
    return RelayLogger(name, layer)


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block."""
    cid = correlation_id or generate_correlation_id()
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class AuditEventType(Enum):
    """Security-relevant protocol events."""
    MESSAGE_PUBLISHED = "message_published"
    REPLAY_REJECTED = "replay_rejected"
    TRANSFER_ACCEPTED = "transfer_accepted"
    TRANSFER_MINTED = "transfer_minted"
    UPGRADE_POLICY_CREATED = "upgrade_policy_created"
    UPGRADE_COMMITTED = "upgrade_committed"
    VERSIONS_ADVANCED = "versions_advanced"
    VERSIONS_REJECTED = "versions_rejected"


@dataclass
class AuditEvent:
    """An audit log entry linked to its predecessor by digest."""
    event_id: str
    event_type: AuditEventType
    timestamp: str
    resource_id: str
    outcome: str
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_event_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self.compute_digest()

    def compute_digest(self) -> str:
        content = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "resource_id": self.resource_id,
            "outcome": self.outcome,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
        }
        data = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(data.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "resource_id": self.resource_id,
            "outcome": self.outcome,
            "correlation_id": self.correlation_id,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
            "event_digest": self.event_digest,
        }


class AuditLogger:
    """
    Tamper-evident audit logger.

    Each event includes the digest of the previous event, so editing or
    dropping any entry breaks ``verify_chain``.
    """

    def __init__(self, logger: Optional[RelayLogger] = None):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()
        self._logger = logger or get_logger("audit", RelayLayer.RELAY)

    def record(
        self,
        event_type: AuditEventType,
        resource_id: str,
        outcome: str = "success",
        **details: Any,
    ) -> AuditEvent:
        with self._lock:
            previous = self._events[-1].event_digest if self._events else None
            event = AuditEvent(
                event_id=f"evt-{len(self._events) + 1:012d}",
                event_type=event_type,
                timestamp=datetime.now(timezone.utc).isoformat(),
                resource_id=resource_id,
                outcome=outcome,
                correlation_id=get_correlation_id(),
                details=details,
                previous_event_digest=previous,
            )
            self._events.append(event)

        self._logger.info(
            f"AUDIT: {event_type.value} {resource_id}",
            operation="audit",
            outcome=outcome,
            event_digest=event.event_digest,
        )
        return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """Returns (valid, first_invalid_index)."""
        with self._lock:
            for i, event in enumerate(self._events):
                if event.compute_digest() != event.event_digest:
                    return (False, i)
                expected_prev = self._events[i - 1].event_digest if i > 0 else None
                if event.previous_event_digest != expected_prev:
                    return (False, i)
            return (True, None)

    def events(self, event_type: Optional[AuditEventType] = None) -> List[AuditEvent]:
        with self._lock:
            events = list(self._events)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events

    def export(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._events]
