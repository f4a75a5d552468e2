"""
CCTP Relay Dependency Upgrade Ratchet

Lets anyone apply a dependency bump through a shared, dependency-only
upgrade permission, while no one can move a dependency version backward.

State machine per DependencyUpgradeCap:

    ┌──────┐ init_upgrade_policy ┌────────┐  commit_upgrade  ┌──────────────┐
    │ Init │────────────────────▶│ Active │─────────────────▶│ PendingCheck │
    └──────┘                     └────────┘◀─────────────────└──────────────┘
                                   │    ▲    check_dep_versions
                 authorize_upgrade └────┘

PendingCheck is the existence of an unspent CheckToken, which the cap also
records. Only commit_upgrade creates one and only a successful
check_dep_versions clears it; while one is outstanding, authorize_upgrade
and commit_upgrade refuse to start another upgrade, so a committed upgrade
cannot skip re-validation.

Only direct dependencies are tracked. Whether a downgrade of an indirect
dependency can slip past the ratchet depends on the host platform and is
left open.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from cctp_relay.hardening import (
    AtomicCounter,
    CapabilityForged,
    CheckTokenMismatch,
    DependencyVersionDecreased,
    NotInitialVersion,
    SingleUse,
    UpgradeCheckPending,
    Validators,
)
from cctp_relay.interfaces import UpgradePermission, VersionSource
from cctp_relay.observability import AuditEventType, AuditLogger, RelayLayer, get_logger

logger = get_logger("ratchet", RelayLayer.RATCHET)

# Version of an upgrade permission that has never been used
INITIAL_PERMISSION_VERSION = 1

_CAP_KEY = object()
_TOKEN_KEY = object()
_cap_ids = AtomicCounter(0)


class TrackedDependency(Enum):
    """Direct dependencies whose versions the ratchet protects."""
    MESSAGE_RELAY = "message_relay"
    MESSAGE_TRANSMITTER = "message_transmitter"
    TOKEN_MESSENGER_MINTER = "token_messenger_minter"


class DependencyUpgradeCap:
    """Shared upgrade permission plus last-observed dependency versions."""

    def __init__(
        self,
        key: object,
        permission: UpgradePermission,
        sources: Mapping[TrackedDependency, VersionSource],
        versions: Mapping[TrackedDependency, int],
        audit: Optional[AuditLogger] = None,
    ):
        if key is not _CAP_KEY:
            raise CapabilityForged("DependencyUpgradeCap is created by init_upgrade_policy")
        self.cap_id = f"upgrade-cap-{_cap_ids.increment():06d}"
        self._permission = permission
        self._sources: Dict[TrackedDependency, VersionSource] = dict(sources)
        self._versions: Dict[TrackedDependency, int] = dict(versions)
        self._audit = audit
        self._pending: Optional[CheckToken] = None
        self._lock = threading.RLock()

    @property
    def versions(self) -> Dict[TrackedDependency, int]:
        with self._lock:
            return dict(self._versions)

    @property
    def check_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def _require_no_pending_check(self) -> None:
        if self._pending is not None:
            raise UpgradeCheckPending(
                f"{self.cap_id} has a committed upgrade awaiting check_dep_versions",
                cap=self.cap_id,
            )

    def version_of(self, dependency: TrackedDependency) -> int:
        with self._lock:
            return self._versions[dependency]

    def _record(self, event_type: AuditEventType, outcome: str = "success", **details: Any) -> None:
        if self._audit is not None:
            self._audit.record(event_type, self.cap_id, outcome, **details)


class CheckToken(SingleUse):
    """Returned by commit_upgrade; must be spent by check_dep_versions."""

    __slots__ = ("cap_id",)

    def __init__(self, key: object, cap_id: str):
        super().__init__(key, _TOKEN_KEY)
        self.cap_id = cap_id


def _observe(sources: Mapping[TrackedDependency, VersionSource]) -> Dict[TrackedDependency, int]:
    return {
        dep: Validators.uint(sources[dep].current_version(), 64, dep.value)
        for dep in TrackedDependency
    }


def init_upgrade_policy(
    permission: UpgradePermission,
    sources: Mapping[TrackedDependency, VersionSource],
    audit: Optional[AuditLogger] = None,
) -> DependencyUpgradeCap:
    """
    Wrap a pristine upgrade permission in a shared, ratcheted cap.

    A permission that has already been used could carry stale versions, so
    anything past INITIAL_PERMISSION_VERSION is refused.
    """
    if permission.version != INITIAL_PERMISSION_VERSION:
        raise NotInitialVersion(permission.version)
    missing = [dep.value for dep in TrackedDependency if dep not in sources]
    if missing:
        raise ValueError(f"Missing version sources: {', '.join(missing)}")

    versions = _observe(sources)
    permission.restrict_to_dependency_only()

    cap = DependencyUpgradeCap(_CAP_KEY, permission, sources, versions, audit)
    logger.info(
        "Upgrade policy created",
        operation="init_upgrade_policy",
        cap_id=cap.cap_id,
        **{dep.value: v for dep, v in versions.items()},
    )
    cap._record(AuditEventType.UPGRADE_POLICY_CREATED, **{dep.value: v for dep, v in versions.items()})
    return cap


def authorize_upgrade(cap: DependencyUpgradeCap, policy: int, digest: bytes) -> Any:
    """Obtain an upgrade ticket from the wrapped permission."""
    with cap._lock:
        cap._require_no_pending_check()
        return cap._permission.authorize(policy, digest)


def commit_upgrade(cap: DependencyUpgradeCap, receipt: Any) -> CheckToken:
    """Commit an applied upgrade. The returned token must go to check_dep_versions."""
    with cap._lock:
        cap._require_no_pending_check()
        cap._permission.commit(receipt)
        token = CheckToken(_TOKEN_KEY, cap.cap_id)
        cap._pending = token
    logger.info("Upgrade committed", operation="commit_upgrade", cap_id=cap.cap_id)
    cap._record(AuditEventType.UPGRADE_COMMITTED, permission_version=cap._permission.version)
    return token


def check_dep_versions(cap: DependencyUpgradeCap, token: CheckToken) -> Dict[TrackedDependency, int]:
    """
    Spend a CheckToken, refusing any dependency downgrade.

    Every observed version must be at least the stored one; then all stored
    versions advance together. On failure nothing changes and the token
    stays live.
    """
    if token.cap_id != cap.cap_id:
        raise CheckTokenMismatch(
            f"Token from {token.cap_id} presented to {cap.cap_id}",
            token_cap=token.cap_id,
            cap=cap.cap_id,
        )

    with token._spending(), cap._lock:
        observed = _observe(cap._sources)
        for dep in TrackedDependency:
            stored = cap._versions[dep]
            if observed[dep] < stored:
                logger.warning(
                    "Dependency downgrade rejected",
                    operation="check_dep_versions",
                    error_code=DependencyVersionDecreased.code,
                    dependency=dep.value,
                    stored=stored,
                    observed=observed[dep],
                )
                cap._record(
                    AuditEventType.VERSIONS_REJECTED,
                    outcome="failure",
                    dependency=dep.value,
                    stored=stored,
                    observed=observed[dep],
                )
                raise DependencyVersionDecreased(dep.value, stored, observed[dep])
        cap._versions.update(observed)
        cap._pending = None

    logger.info(
        "Dependency versions advanced",
        operation="check_dep_versions",
        cap_id=cap.cap_id,
        **{dep.value: v for dep, v in observed.items()},
    )
    cap._record(AuditEventType.VERSIONS_ADVANCED, **{dep.value: v for dep, v in observed.items()})
    return dict(observed)
