"""Unit tests for RollbackController candidate selection."""

from pathlib import Path
from unittest.mock import patch

import pytest

from haproxy_ctl.backup import BackupStore
from haproxy_ctl.models import Backup, FatalRollbackError
from haproxy_ctl.rollback import RollbackController


def _write_backup(backup_dir: Path, stamp: str, content: str) -> Path:
    backup_dir.mkdir(parents=True, exist_ok=True)
    path = backup_dir / f"haproxy.cfg.{stamp}"
    path.write_text(content)
    return path


T1 = "20240501_100000_000000"
T2 = "20240501_110000_000000"
T3 = "20240501_120000_000000"


def _controller(live_config: Path, backup_dir: Path, validator, reloader) -> RollbackController:
    return RollbackController("ha01", live_config, "haproxy", BackupStore(backup_dir, "ha01"), validator, reloader)


class TestRollbackSelection:
    """Tests for LKG preference and newest-first backup scanning."""

    def test_prefers_lkg(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T3, "t3")
        controller = _controller(live_config, backup_dir, validator, reloader)
        controller.store.promote_lkg("lkg")
        live_config.write_text("broken")

        restored = controller.rollback()

        assert restored.is_lkg
        assert live_config.read_text() == "lkg"

    def test_newest_valid_backup_becomes_lkg(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        t2 = _write_backup(backup_dir, T2, "t2")
        _write_backup(backup_dir, T3, "INVALID t3")
        controller = _controller(live_config, backup_dir, validator, reloader)

        restored = controller.rollback()

        assert restored.path == t2
        assert live_config.read_text() == "t2"
        assert controller.store.lkg().read() == b"t2"
        assert [path.name for path in validator.calls[:2]] == [f"haproxy.cfg.{T3}", f"haproxy.cfg.{T2}"]

    def test_invalid_lkg_falls_through(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        controller = _controller(live_config, backup_dir, validator, reloader)
        controller.store.promote_lkg("INVALID lkg")

        restored = controller.rollback()

        assert not restored.is_lkg
        assert live_config.read_text() == "t1"
        assert controller.store.lkg().read() == b"t1"

    def test_no_backups_is_fatal(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        live_config.write_text("current")
        controller = _controller(live_config, backup_dir, validator, reloader)

        with pytest.raises(FatalRollbackError, match="manual intervention"):
            controller.rollback()
        assert live_config.read_text() == "current"

    def test_all_candidates_invalid_is_fatal(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T1, "INVALID t1")
        _write_backup(backup_dir, T2, "INVALID t2")
        live_config.write_text("current")
        controller = _controller(live_config, backup_dir, validator, reloader)

        with pytest.raises(FatalRollbackError, match=T2):
            controller.rollback()
        assert live_config.read_text() == "current"
        assert reloader.reload_calls == []


class TestRollbackActivation:
    """Tests for the apply, reload and verify sequence during rollback."""

    def test_restart_when_reload_fails(self, live_config: Path, backup_dir: Path, validator, make_reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        reloader = make_reloader([False])
        controller = _controller(live_config, backup_dir, validator, reloader)

        controller.rollback()

        assert reloader.reload_calls == ["haproxy"]
        assert reloader.restart_calls == ["haproxy"]
        assert live_config.read_text() == "t1"

    def test_next_candidate_when_activation_fails(self, live_config: Path, backup_dir: Path, validator, make_reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        _write_backup(backup_dir, T2, "t2")
        reloader = make_reloader([False, True], restart_ok=False)
        controller = _controller(live_config, backup_dir, validator, reloader)

        restored = controller.rollback()

        assert restored.path.name == f"haproxy.cfg.{T1}"
        assert live_config.read_text() == "t1"

    def test_failed_config_not_backed_up(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        live_config.write_text("bad candidate")
        controller = _controller(live_config, backup_dir, validator, reloader)

        controller.rollback()

        assert [backup.read() for backup in controller.store.backups()] == [b"t1"]

    def test_non_utf8_lkg_restored_byte_for_byte(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        content = b"# caf\xe9\nglobal\n"
        controller = _controller(live_config, backup_dir, validator, reloader)
        controller.store.promote_lkg(content)

        restored = controller.rollback()

        assert restored.is_lkg
        assert live_config.read_bytes() == content

    def test_unreadable_candidate_falls_through(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, T1, "t1")
        controller = _controller(live_config, backup_dir, validator, reloader)
        controller.store.promote_lkg("lkg")

        def read_or_fail(backup: Backup) -> bytes:
            if backup.is_lkg:
                raise OSError("Input/output error")
            return backup.path.read_bytes()

        with patch.object(Backup, "read", autospec=True, side_effect=read_or_fail):
            restored = controller.rollback()

        assert restored.path.name == f"haproxy.cfg.{T1}"
        assert live_config.read_text() == "t1"

    def test_second_resolution_backup_names(self, live_config: Path, backup_dir: Path, validator, reloader) -> None:
        _write_backup(backup_dir, "20240501_120000", "written by apply_local")
        controller = _controller(live_config, backup_dir, validator, reloader)

        restored = controller.rollback()

        assert restored.path.name == "haproxy.cfg.20240501_120000"
        assert live_config.read_text() == "written by apply_local"
