"""Timestamped configuration backups and the Last-Known-Good slot."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from .models import Backup

LOG = logging.getLogger("haproxy_ctl.backup")

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
# Second-resolution names written by earlier tooling into the same directory.
LEGACY_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
LKG_SUFFIX = "LKG"


def atomic_write(path: Path, content: str | bytes, mode_from: Path | None = None) -> None:
    """Replace ``path`` with ``content`` in a single rename.

    The file mode is copied from ``mode_from`` when given, otherwise from the
    file being replaced. Bytes are written untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    if isinstance(content, bytes):
        tmp_path.write_bytes(content)
    else:
        tmp_path.write_text(content, encoding="utf-8")
    mode_source = mode_from if mode_from is not None and mode_from.exists() else path
    if mode_source.exists():
        shutil.copymode(mode_source, tmp_path)
    tmp_path.replace(path)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_timestamp(suffix: str) -> datetime | None:
    for fmt in (TIMESTAMP_FORMAT, LEGACY_TIMESTAMP_FORMAT):
        try:
            return datetime.strptime(suffix, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


class BackupStore:
    """Backups of one node's live configuration, kept in a directory.

    Timestamped copies are named ``<basename>.<YYYYmmdd_HHMMSS_ffffff>`` and
    accumulate; the Last-Known-Good copy lives at ``<basename>.LKG``.
    """

    def __init__(
        self,
        directory: Path,
        node_id: str,
        basename: str = "haproxy.cfg",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.directory = Path(directory)
        self.node_id = node_id
        self.basename = basename
        self._clock = clock

    @property
    def lkg_path(self) -> Path:
        return self.directory / f"{self.basename}.{LKG_SUFFIX}"

    def _path_for(self, timestamp: datetime) -> Path:
        return self.directory / f"{self.basename}.{timestamp.strftime(TIMESTAMP_FORMAT)}"

    def snapshot(self, content: str | bytes) -> Backup:
        """Store a new timestamped backup."""
        timestamp = self._clock()
        path = self._path_for(timestamp)
        while path.exists():
            timestamp += timedelta(microseconds=1)
            path = self._path_for(timestamp)
        atomic_write(path, content)
        LOG.info("Backup of %s saved to %s", self.node_id, path)
        return Backup(node_id=self.node_id, timestamp=timestamp, path=path)

    def lkg(self) -> Backup | None:
        """Return the Last-Known-Good backup if one exists."""
        if not self.lkg_path.is_file():
            return None
        mtime = datetime.fromtimestamp(self.lkg_path.stat().st_mtime, tz=timezone.utc)
        return Backup(node_id=self.node_id, timestamp=mtime, path=self.lkg_path, is_lkg=True)

    def backups(self) -> list[Backup]:
        """Return timestamped backups, newest first; the LKG slot is excluded."""
        found: list[Backup] = []
        if not self.directory.is_dir():
            return found
        prefix = f"{self.basename}."
        for path in self.directory.glob(f"{self.basename}.*"):
            suffix = path.name[len(prefix) :]
            if suffix == LKG_SUFFIX or not path.is_file():
                continue
            timestamp = _parse_timestamp(suffix)
            if timestamp is None:
                LOG.debug("Ignoring %s: not a backup name", path)
                continue
            found.append(Backup(node_id=self.node_id, timestamp=timestamp, path=path))
        found.sort(key=lambda backup: backup.timestamp, reverse=True)
        return found

    def has_rollback_target(self) -> bool:
        """Return True if any backup (LKG or timestamped) exists."""
        return self.lkg() is not None or bool(self.backups())

    def promote_lkg(self, content: str | bytes) -> Backup:
        """Overwrite the LKG slot with ``content``."""
        atomic_write(self.lkg_path, content)
        LOG.info("LKG for %s updated: %s", self.node_id, self.lkg_path)
        return self.lkg()
