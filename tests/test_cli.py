"""Tests for the haproxy-ctl command line."""

from pathlib import Path
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from haproxy_ctl.cli import main
from haproxy_ctl.models import (
    ActionKind,
    ActionResult,
    DesiredRecord,
    PreconditionError,
    ReconciliationAction,
    SyncReport,
    ZoneSyncReport,
)


@pytest.fixture(autouse=True)
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every path at tmp_path and make the external commands no-ops."""
    monkeypatch.setenv("HAPROXY_CFG", str(tmp_path / "etc" / "haproxy.cfg"))
    monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backup"))
    monkeypatch.setenv("NODES_FILE", str(tmp_path / "nodes.yml"))
    monkeypatch.setenv("NODE_ID", "ha01")
    monkeypatch.setenv("HAPROXY_CHECK_CMD", "true {path}")
    monkeypatch.setenv("HAPROXY_RELOAD_CMD", "true {service}")
    monkeypatch.setenv("HAPROXY_RESTART_CMD", "true {service}")
    monkeypatch.setenv("MIN_NODES", "2")
    return tmp_path


def _run(argv: List[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def _report(mode: str, results_ok: List[bool] | None = None) -> SyncReport:
    record = DesiredRecord(zone="example.com", name="www", type="A", content="2.2.2.2")
    action = ReconciliationAction(ActionKind.CREATE, record)
    zone = ZoneSyncReport(zone="example.com", zone_id="zone-1", actions=[action])
    for ok in results_ok or []:
        zone.results.append(ActionResult(action, ok=ok, error=None if ok else "boom"))
    return SyncReport(mode=mode, zones=[zone])


class TestDnsCommands:
    """Tests for check/plan/apply wiring."""

    def test_plan_prints_actions(self, capsys: pytest.CaptureFixture[str]) -> None:
        controller = MagicMock()
        controller.plan.return_value = _report("plan")
        with patch("haproxy_ctl.cli.DnsSyncController", return_value=controller):
            code = _run(["plan", "--filter", "www"])

        assert code == 0
        assert "CREATE: www.example.com (A) -> 2.2.2.2" in capsys.readouterr().out
        assert controller.plan.call_args.kwargs["name_filter"] == "www"
        assert controller.plan.call_args.kwargs["force_overwrite"] is None

    def test_plan_writes_json(self, env: Path) -> None:
        controller = MagicMock()
        controller.plan.return_value = _report("plan")
        json_path = env / "plan.json"
        with patch("haproxy_ctl.cli.DnsSyncController", return_value=controller):
            assert _run(["plan", "--json", str(json_path)]) == 0

        assert '"action": "create"' in json_path.read_text()

    def test_apply_failure_exit_code(self, capsys: pytest.CaptureFixture[str]) -> None:
        controller = MagicMock()
        controller.apply.return_value = _report("apply", [False])
        with patch("haproxy_ctl.cli.DnsSyncController", return_value=controller):
            code = _run(["apply", "--force-overwrite"])

        assert code == 1
        out = capsys.readouterr().out
        assert "[FAILED]" in out
        assert "Summary: 1 planned, 0 succeeded, 1 failed" in out
        assert controller.apply.call_args.kwargs["force_overwrite"] is True

    def test_check_precondition_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        controller = MagicMock()
        controller.check.side_effect = PreconditionError("CLOUDFLARE_API_TOKEN environment variable is not set.")
        with patch("haproxy_ctl.cli.DnsSyncController", return_value=controller):
            code = _run(["check"])

        assert code == 1
        assert "Error: CLOUDFLARE_API_TOKEN" in capsys.readouterr().err

    def test_unexpected_error_exit_code(self) -> None:
        with patch("haproxy_ctl.cli.DnsSyncController", side_effect=RuntimeError("kaboom")):
            assert _run(["check"]) == 3


class TestDeployCommands:
    """Tests for deploy and rollback on the local node."""

    def test_deploy_local_node(self, env: Path, capsys: pytest.CaptureFixture[str]) -> None:
        candidate = env / "candidate.cfg"
        candidate.write_text("global\n")

        code = _run(["deploy", "--candidate", str(candidate)])

        assert code == 0
        assert (env / "etc" / "haproxy.cfg").read_text() == "global\n"
        assert (env / "backup" / "haproxy.cfg.LKG").read_text() == "global\n"
        assert "ha01: Verified" in capsys.readouterr().out

    def test_deploy_failed_validation(self, env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HAPROXY_CHECK_CMD", "false {path}")
        candidate = env / "candidate.cfg"
        candidate.write_text("broken\n")

        assert _run(["deploy", "--candidate", str(candidate)]) == 1
        assert not (env / "etc" / "haproxy.cfg").exists()

    def test_deploy_unknown_node(self, env: Path) -> None:
        candidate = env / "candidate.cfg"
        candidate.write_text("global\n")

        assert _run(["deploy", "--candidate", str(candidate), "--node", "ha09"]) == 1

    def test_rollback_without_backups(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(["rollback"]) == 1
        assert "manual intervention" in capsys.readouterr().err

    def test_rollback_restores_lkg(self, env: Path, capsys: pytest.CaptureFixture[str]) -> None:
        (env / "backup").mkdir()
        (env / "backup" / "haproxy.cfg.LKG").write_text("good\n")

        assert _run(["rollback", "--node", "ha01"]) == 0
        assert (env / "etc" / "haproxy.cfg").read_text() == "good\n"
        assert "restored from haproxy.cfg.LKG" in capsys.readouterr().out


class TestNodesCommands:
    """Tests for node management commands."""

    @pytest.fixture
    def active_file(self, env: Path) -> Path:
        path = env / "active-node.yml"
        path.write_text("active_node: ha01\nexternal_ips:\n  ha01: 1.1.1.1\n  ha02: 2.2.2.2\n")
        return path

    def test_list(self, active_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(["nodes", "--active-node", str(active_file), "list"]) == 0
        out = capsys.readouterr().out
        assert "Active node: ha01" in out
        assert "ha02: 2.2.2.2" in out

    def test_failover(self, active_file: Path) -> None:
        assert _run(["nodes", "--active-node", str(active_file), "failover", "ha02"]) == 0
        assert "active_node: ha02" in active_file.read_text()

    def test_remove_below_minimum(self, active_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(["nodes", "--active-node", str(active_file), "remove", "ha02"]) == 1
        assert "minimum 2 nodes" in capsys.readouterr().err
