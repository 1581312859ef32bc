"""Core data models used by haproxy-ctl."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping


class HaproxyCtlError(Exception):
    """Base exception for haproxy-ctl."""


class ConfigError(HaproxyCtlError):
    """Raised when desired state or the active-node mapping is invalid."""


class PreconditionError(HaproxyCtlError):
    """Raised when credentials, files or the provider are unavailable."""


class ConflictError(HaproxyCtlError):
    """Raised when a remote record has a different type than desired."""


class ProviderError(HaproxyCtlError):
    """Raised when the DNS provider returns a non-success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthorizationError(ProviderError):
    """Raised when the provider rejects the credentials."""


class ValidationError(HaproxyCtlError):
    """Raised when a configuration fails the syntax check."""


class ReloadError(HaproxyCtlError):
    """Raised when the reload signal or the post-reload check fails."""


class FatalRollbackError(HaproxyCtlError):
    """Raised when no backup can be restored; manual intervention required."""


@dataclass(frozen=True)
class ActiveNodeMap:
    """Snapshot of the active node pointer and the node IP table."""

    active_node: str
    external_ips: Mapping[str, str]

    def active_ip(self) -> str:
        """Return the external IP of the active node."""
        try:
            return self.external_ips[self.active_node]
        except KeyError as exc:
            raise ConfigError(f"Active node '{self.active_node}' has no entry in external_ips.") from exc


@dataclass(frozen=True)
class DesiredRecord:
    """A declared DNS record with its content already resolved."""

    zone: str
    name: str
    type: str
    content: str
    proxied: bool = True
    ttl: int | str = "auto"
    comment: str = ""

    @property
    def fqdn(self) -> str:
        """Return the fully qualified record name."""
        return build_fqdn(self.name, self.zone)

    def provider_ttl(self) -> int:
        """Return the TTL as the provider expects it (1 means automatic)."""
        return 1 if self.ttl == "auto" else int(self.ttl)

    def payload(self) -> dict[str, object]:
        """Return the write payload for this record."""
        return {
            "type": self.type,
            "name": self.fqdn,
            "content": self.content,
            "proxied": self.proxied,
            "ttl": self.provider_ttl(),
            "comment": self.comment,
        }


@dataclass(frozen=True)
class RemoteRecord:
    """A DNS record as returned by the provider."""

    id: str
    name: str
    type: str
    content: str
    proxied: bool = False
    ttl: int = 1
    comment: str = ""


def build_fqdn(name: str, zone: str) -> str:
    """Return the FQDN for a short record name inside a zone."""
    if name == "@":
        return zone
    return f"{name}.{zone}"


class ActionKind(str, Enum):
    """Kinds of reconciliation actions."""

    CREATE = "create"
    UPDATE = "update"
    CONFLICT_SKIP = "conflict-skip"
    CONFLICT_REPLACE = "conflict-replace"


@dataclass(frozen=True)
class ReconciliationAction:
    """A single planned change for one desired record."""

    kind: ActionKind
    desired: DesiredRecord
    remote: RemoteRecord | None = None
    reason: str = ""

    def describe(self) -> str:
        """Return a one-line human readable description."""
        record = self.desired
        if self.kind is ActionKind.CREATE:
            return f"CREATE: {record.fqdn} ({record.type}) -> {record.content}"
        if self.kind is ActionKind.UPDATE:
            return f"UPDATE: {record.fqdn} ({record.type}) -> {record.content}"
        if self.kind is ActionKind.CONFLICT_REPLACE:
            return f"REPLACE: {record.fqdn} ({self.remote.type} -> {record.type}) -> {record.content}"
        return f"SKIP: {record.fqdn} ({self.reason})"


NOT_ATTEMPTED = "not attempted: run aborted"


@dataclass
class ActionResult:
    """Outcome of executing (or not executing) one action."""

    action: ReconciliationAction
    ok: bool
    attempted: bool = True
    error: str | None = None


@dataclass
class ZoneSyncReport:
    """Plan and execution results for a single zone."""

    zone: str
    zone_id: str
    actions: list[ReconciliationAction] = field(default_factory=list)
    results: list[ActionResult] = field(default_factory=list)

    @property
    def failed(self) -> list[ActionResult]:
        """Return results that did not succeed."""
        return [result for result in self.results if not result.ok]


@dataclass
class SyncReport:
    """Aggregated reconciliation report across zones."""

    mode: str
    zones: list[ZoneSyncReport] = field(default_factory=list)
    aborted: bool = False

    def has_failures(self) -> bool:
        """Return True when any action failed or the run was aborted."""
        return self.aborted or any(zone.failed for zone in self.zones)

    def summary(self) -> dict[str, int]:
        """Return counters for the final summary line."""
        counts = {"planned": 0, "succeeded": 0, "failed": 0, "conflicts": 0, "not_attempted": 0}
        for zone in self.zones:
            counts["planned"] += len(zone.actions)
            for result in zone.results:
                if result.ok:
                    counts["succeeded"] += 1
                elif result.action.kind is ActionKind.CONFLICT_SKIP and result.error != NOT_ATTEMPTED:
                    counts["conflicts"] += 1
                elif result.attempted:
                    counts["failed"] += 1
                else:
                    counts["not_attempted"] += 1
        return counts


class NodePhase(str, Enum):
    """Phases of a node rollout."""

    IDLE = "Idle"
    BACKING_UP = "BackingUp"
    VALIDATING = "Validating"
    APPLYING = "Applying"
    RELOADING = "Reloading"
    VERIFYING = "Verifying"
    VERIFIED = "Verified"
    ROLLING_BACK = "RollingBack"
    ROLLED_BACK = "RolledBack"
    FATAL = "Fatal"

    @property
    def terminal(self) -> bool:
        """Return True for phases that end a rollout."""
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({NodePhase.VERIFIED, NodePhase.ROLLED_BACK, NodePhase.FATAL})

_FAILURE_EXITS = frozenset({NodePhase.ROLLING_BACK, NodePhase.FATAL})

TRANSITIONS: dict[NodePhase, frozenset[NodePhase]] = {
    NodePhase.IDLE: frozenset({NodePhase.BACKING_UP}),
    NodePhase.BACKING_UP: frozenset({NodePhase.VALIDATING, NodePhase.FATAL}),
    NodePhase.VALIDATING: frozenset({NodePhase.APPLYING}) | _FAILURE_EXITS,
    NodePhase.APPLYING: frozenset({NodePhase.RELOADING}) | _FAILURE_EXITS,
    NodePhase.RELOADING: frozenset({NodePhase.VERIFYING}) | _FAILURE_EXITS,
    NodePhase.VERIFYING: frozenset({NodePhase.VERIFIED}) | _FAILURE_EXITS,
    NodePhase.ROLLING_BACK: frozenset({NodePhase.ROLLED_BACK, NodePhase.FATAL}),
    NodePhase.VERIFIED: frozenset(),
    NodePhase.ROLLED_BACK: frozenset(),
    NodePhase.FATAL: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class NodeDeploymentState:
    """Mutable state of one rollout invocation on one node."""

    node_id: str
    candidate_config: str | bytes = b""
    phase: NodePhase = NodePhase.IDLE
    timestamp: datetime = field(default_factory=_utcnow)
    history: list[NodePhase] = field(default_factory=lambda: [NodePhase.IDLE])
    failed_phase: NodePhase | None = None
    error: str | None = None
    backup_path: Path | None = None
    restored_from: Path | None = None

    def transition(self, phase: NodePhase) -> None:
        """Move to the next phase, rejecting moves the state machine forbids."""
        if phase not in TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal rollout transition {self.phase.value} -> {phase.value} on {self.node_id}")
        self.phase = phase
        self.timestamp = _utcnow()
        self.history.append(phase)

    def fail(self, error: Exception) -> None:
        """Remember where and why the rollout failed."""
        if self.failed_phase is None:
            self.failed_phase = self.phase
        self.error = str(error)


@dataclass(frozen=True)
class Backup:
    """A stored copy of a node's live configuration."""

    node_id: str
    timestamp: datetime
    path: Path
    is_lkg: bool = False

    def read(self) -> bytes:
        """Return the backed-up configuration as stored, byte for byte."""
        return self.path.read_bytes()


@dataclass
class RolloutReport:
    """Per-node results of a fleet rollout."""

    results: list[NodeDeploymentState] = field(default_factory=list)
    not_attempted: list[str] = field(default_factory=list)

    def succeeded(self) -> bool:
        """Return True when every node was attempted and verified."""
        return not self.not_attempted and all(state.phase is NodePhase.VERIFIED for state in self.results)
