"""Syntax-check and reload collaborators, run as external commands."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from .models import ConfigError

LOG = logging.getLogger("haproxy_ctl.haproxy")


def render_command(template: str, **values: str) -> list[str]:
    """Split a command template and fill in ``{placeholders}`` per argument."""
    try:
        return [part.format(**values) for part in shlex.split(template)]
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigError(f"Invalid command template {template!r}: {exc}") from exc


def _run(cmd: list[str], timeout: float) -> bool:
    """Run a command and report whether it exited cleanly."""
    LOG.info("Running %s", " ".join(cmd))
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout)
    except subprocess.CalledProcessError as exc:
        output = (exc.stderr or exc.stdout or "").strip()
        LOG.error("%s exited with %s: %s", cmd[0], exc.returncode, output)
        return False
    except subprocess.TimeoutExpired:
        LOG.error("%s timed out after %ss", cmd[0], timeout)
        return False
    except OSError as exc:
        LOG.error("Cannot run %s: %s", cmd[0], exc)
        return False
    return True


class CommandValidator:
    """Pass/fail syntax check of a configuration file."""

    def __init__(self, template: str = "haproxy -c -f {path}", timeout: float = 60.0, node_id: str = ""):
        self.template = template
        self.timeout = timeout
        self.node_id = node_id

    def validate(self, path: Path) -> bool:
        cmd = render_command(self.template, path=str(path), node=self.node_id)
        return _run(cmd, self.timeout)


class CommandReloader:
    """Graceful reload (and last-resort restart) of the running proxy."""

    def __init__(
        self,
        reload_template: str = "systemctl reload {service}",
        restart_template: str = "systemctl restart {service}",
        timeout: float = 60.0,
        node_id: str = "",
    ):
        self.reload_template = reload_template
        self.restart_template = restart_template
        self.timeout = timeout
        self.node_id = node_id

    def reload(self, service: str) -> bool:
        cmd = render_command(self.reload_template, service=service, node=self.node_id)
        return _run(cmd, self.timeout)

    def restart(self, service: str) -> bool:
        if not self.restart_template:
            LOG.debug("No restart command configured for %s", service)
            return False
        cmd = render_command(self.restart_template, service=service, node=self.node_id)
        return _run(cmd, self.timeout)
