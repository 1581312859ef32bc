"""Recovery of a node to its Last-Known-Good or newest valid backup."""

from __future__ import annotations

import logging
from pathlib import Path

from .backup import BackupStore, atomic_write
from .haproxy import CommandReloader, CommandValidator
from .inventory import NodeTarget
from .models import Backup, FatalRollbackError, ReloadError

LOG = logging.getLogger("haproxy_ctl.rollback")


def _label(backup: Backup) -> str:
    return "LKG" if backup.is_lkg else backup.path.name


class RollbackController:
    """Restores a node from its backup chain.

    Candidates are tried in order: the LKG slot, then timestamped backups
    newest-first. Each must pass the syntax check before it touches the live
    path. The failed configuration is never backed up.
    """

    def __init__(
        self,
        node_id: str,
        live_config: Path,
        service: str,
        store: BackupStore,
        validator: CommandValidator,
        reloader: CommandReloader,
    ):
        self.node_id = node_id
        self.live_config = live_config
        self.service = service
        self.store = store
        self.validator = validator
        self.reloader = reloader

    @classmethod
    def for_node(cls, node: NodeTarget) -> "RollbackController":
        return cls(
            node.node_id,
            node.live_config,
            node.service,
            node.backup_store(),
            node.validator(),
            node.reloader(),
        )

    def candidates(self) -> list[Backup]:
        """Return rollback candidates in preference order."""
        lkg = self.store.lkg()
        backups = self.store.backups()
        return [lkg, *backups] if lkg else backups

    def rollback(self, reason: str = "") -> Backup:
        """Restore the first valid candidate and return it.

        Raises FatalRollbackError when nothing can be restored.
        """
        LOG.warning("Rolling back %s%s", self.node_id, f": {reason}" if reason else "")
        candidates = self.candidates()
        if not candidates:
            raise FatalRollbackError(
                f"No backup configurations found for {self.node_id}; manual intervention required."
            )

        for backup in candidates:
            label = _label(backup)
            LOG.info("Trying %s on %s", label, self.node_id)
            if not self.validator.validate(backup.path):
                LOG.warning("%s on %s failed validation, trying the next backup", label, self.node_id)
                continue
            try:
                content = backup.read()
                self._activate(content)
            except (OSError, ReloadError) as exc:
                LOG.error("Restoring %s on %s failed: %s", label, self.node_id, exc)
                continue
            if not backup.is_lkg:
                try:
                    self.store.promote_lkg(content)
                except OSError as exc:
                    LOG.error("Restored %s on %s but could not promote it to LKG: %s", label, self.node_id, exc)
            LOG.info("Rollback of %s successful using %s", self.node_id, label)
            return backup

        tried = ", ".join(_label(backup) for backup in candidates)
        raise FatalRollbackError(
            f"Rollback of {self.node_id} failed, no valid configuration among: {tried}; "
            "manual intervention required."
        )

    def _activate(self, content: bytes) -> None:
        """Apply, reload and verify a restored configuration."""
        atomic_write(self.live_config, content)
        if not self.reloader.reload(self.service):
            LOG.warning("Reload of %s failed, trying restart", self.service)
            if not self.reloader.restart(self.service):
                raise ReloadError(f"Neither reload nor restart of {self.service} succeeded.")
        if not self.validator.validate(self.live_config):
            raise ReloadError(f"Restored {self.live_config} failed post-reload verification.")
