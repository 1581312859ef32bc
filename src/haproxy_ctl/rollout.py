"""Per-node rollout state machine and the sequential fleet rollout."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from .backup import BackupStore, atomic_write
from .haproxy import CommandReloader, CommandValidator
from .inventory import NodeTarget
from .models import (
    FatalRollbackError,
    HaproxyCtlError,
    NodeDeploymentState,
    NodePhase,
    PreconditionError,
    ReloadError,
    RolloutReport,
    ValidationError,
)
from .rollback import RollbackController

LOG = logging.getLogger("haproxy_ctl.rollout")


class NodeRolloutController:
    """Drives one node through backup, validate, apply, reload and verify.

    The candidate is staged next to the live file and validated there, so a
    candidate that fails the syntax check never reaches the live path. Any
    failure once the live file has been replaced hands over to the rollback
    controller exactly once.
    """

    def __init__(
        self,
        node_id: str,
        live_config: Path,
        service: str,
        store: BackupStore,
        validator: CommandValidator,
        reloader: CommandReloader,
        rollback: RollbackController | None = None,
    ):
        self.node_id = node_id
        self.live_config = live_config
        self.service = service
        self.store = store
        self.validator = validator
        self.reloader = reloader
        self.rollback = rollback or RollbackController(node_id, live_config, service, store, validator, reloader)

    @classmethod
    def for_node(cls, node: NodeTarget) -> "NodeRolloutController":
        return cls(
            node.node_id,
            node.live_config,
            node.service,
            node.backup_store(),
            node.validator(),
            node.reloader(),
        )

    @property
    def pending_path(self) -> Path:
        return self.live_config.with_name(f"{self.live_config.name}.pending")

    def deploy(self, candidate: str | bytes) -> NodeDeploymentState:
        """Roll the candidate configuration out to this node."""
        state = NodeDeploymentState(node_id=self.node_id, candidate_config=candidate)

        state.transition(NodePhase.BACKING_UP)
        try:
            self._backup(state)
        except PreconditionError as exc:
            LOG.error("%s: %s; live configuration left untouched", self.node_id, exc)
            state.fail(exc)
            state.transition(NodePhase.FATAL)
            return state

        state.transition(NodePhase.VALIDATING)
        error = self._stage_and_validate(candidate)
        if error is not None:
            return self._fail_before_mutation(state, error)

        state.transition(NodePhase.APPLYING)
        try:
            self.pending_path.replace(self.live_config)
        except OSError as exc:
            return self._recover(state, HaproxyCtlError(f"Cannot activate {self.live_config}: {exc}"))
        LOG.info("%s: candidate activated at %s", self.node_id, self.live_config)

        state.transition(NodePhase.RELOADING)
        if not self.reloader.reload(self.service):
            return self._recover(state, ReloadError(f"Graceful reload of {self.service} failed."))

        state.transition(NodePhase.VERIFYING)
        if not self.validator.validate(self.live_config):
            return self._recover(state, ReloadError(f"{self.live_config} failed post-reload verification."))

        state.transition(NodePhase.VERIFIED)
        try:
            self.store.promote_lkg(candidate)
        except OSError as exc:
            LOG.error("%s: verified, but the LKG slot could not be updated: %s", self.node_id, exc)
        LOG.info("%s: deployment verified", self.node_id)
        return state

    def _backup(self, state: NodeDeploymentState) -> None:
        """Copy the live configuration into the backup store."""
        if not self.live_config.exists():
            LOG.warning("%s: no existing config at %s to back up (first deployment)", self.node_id, self.live_config)
            return
        try:
            current = self.live_config.read_bytes()
            backup = self.store.snapshot(current)
        except OSError as exc:
            raise PreconditionError(f"Cannot back up {self.live_config}: {exc}") from exc
        state.backup_path = backup.path

    def _stage_and_validate(self, candidate: str | bytes) -> ValidationError | None:
        """Write the candidate beside the live file and syntax-check it."""
        try:
            atomic_write(self.pending_path, candidate, mode_from=self.live_config)
        except OSError as exc:
            return ValidationError(f"Cannot stage candidate at {self.pending_path}: {exc}")
        if self.validator.validate(self.pending_path):
            LOG.info("%s: candidate configuration is valid", self.node_id)
            return None
        self.pending_path.unlink(missing_ok=True)
        return ValidationError(f"Candidate configuration failed validation on {self.node_id}.")

    def _fail_before_mutation(self, state: NodeDeploymentState, error: HaproxyCtlError) -> NodeDeploymentState:
        if self.store.has_rollback_target():
            return self._recover(state, error)
        LOG.error("%s: %s; no rollback target exists", self.node_id, error)
        state.fail(error)
        state.transition(NodePhase.FATAL)
        return state

    def _recover(self, state: NodeDeploymentState, error: HaproxyCtlError) -> NodeDeploymentState:
        LOG.error("%s: %s failed: %s", self.node_id, state.phase.value, error)
        state.fail(error)
        state.transition(NodePhase.ROLLING_BACK)
        try:
            restored = self.rollback.rollback(reason=str(error))
        except FatalRollbackError as exc:
            LOG.critical("%s: %s", self.node_id, exc)
            state.error = f"{error} Rollback failed: {exc}"
            state.transition(NodePhase.FATAL)
            return state
        state.restored_from = restored.path
        state.transition(NodePhase.ROLLED_BACK)
        return state


ControllerFactory = Callable[[NodeTarget], NodeRolloutController]


def read_candidate(candidate_path: Path) -> bytes:
    """Read the configuration artifact that will be rolled out."""
    if not candidate_path.is_file():
        raise PreconditionError(f"Config file not found: {candidate_path}")
    try:
        return candidate_path.read_bytes()
    except OSError as exc:
        raise PreconditionError(f"Cannot read {candidate_path}: {exc}") from exc


def run_rollout(
    nodes: Sequence[NodeTarget],
    candidate_path: Path,
    factory: ControllerFactory = NodeRolloutController.for_node,
) -> RolloutReport:
    """Deploy to nodes one at a time, halting at the first node not verified."""
    candidate = read_candidate(candidate_path)
    report = RolloutReport()
    for index, node in enumerate(nodes):
        LOG.info("Deploying %s to %s (%s/%s)", candidate_path, node.node_id, index + 1, len(nodes))
        state = factory(node).deploy(candidate)
        report.results.append(state)
        if state.phase is not NodePhase.VERIFIED:
            report.not_attempted = [remaining.node_id for remaining in nodes[index + 1 :]]
            if report.not_attempted:
                LOG.error(
                    "Halting rollout after %s ended %s; not attempted: %s",
                    node.node_id,
                    state.phase.value,
                    ", ".join(report.not_attempted),
                )
            break
    return report
