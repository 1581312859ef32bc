"""Environment-driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import ConfigError

DEFAULT_API_URL = "https://api.cloudflare.com/client/v4"


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    api_token: str
    zone_id: str
    api_url: str
    page_size: int
    api_timeout: float
    records_file: Path
    active_node_file: Path
    dns_filter: str
    force_overwrite: bool
    nodes_file: Path
    haproxy_cfg: Path
    backup_dir: Path
    haproxy_service: str
    node_id: str
    check_command: str
    reload_command: str
    restart_command: str
    command_timeout: float
    min_nodes: int
    log_level: str


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Return a boolean parsed from a string."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_number(name: str, default: str, kind: type = int):
    """Read a numeric environment variable, failing closed on garbage."""
    raw = os.getenv(name, default)
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got '{raw}'.") from exc


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    page_size = _parse_number("CLOUDFLARE_PAGE_SIZE", "1000")
    if page_size <= 0:
        raise ConfigError("CLOUDFLARE_PAGE_SIZE must be positive.")

    return AppConfig(
        api_token=os.getenv("CLOUDFLARE_API_TOKEN", "").strip(),
        zone_id=os.getenv("CLOUDFLARE_ZONE_ID", "").strip(),
        api_url=os.getenv("CLOUDFLARE_API_URL", DEFAULT_API_URL).rstrip("/"),
        page_size=page_size,
        api_timeout=_parse_number("API_TIMEOUT", "10", float),
        records_file=Path(os.getenv("DNS_RECORDS_FILE", "cloudflare/dns-records.yml")),
        active_node_file=Path(os.getenv("ACTIVE_NODE_FILE", "cloudflare/active-node.yml")),
        dns_filter=os.getenv("DNS_FILTER", ""),
        force_overwrite=_parse_bool(os.getenv("FORCE_OVERWRITE"), default=False),
        nodes_file=Path(os.getenv("NODES_FILE", "haproxy/nodes.yml")),
        haproxy_cfg=Path(os.getenv("HAPROXY_CFG", "/etc/haproxy/haproxy.cfg")),
        backup_dir=Path(os.getenv("BACKUP_DIR", "/etc/haproxy/backup")),
        haproxy_service=os.getenv("HAPROXY_SERVICE", "haproxy"),
        node_id=os.getenv("NODE_ID", "local"),
        check_command=os.getenv("HAPROXY_CHECK_CMD", "haproxy -c -f {path}"),
        reload_command=os.getenv("HAPROXY_RELOAD_CMD", "systemctl reload {service}"),
        restart_command=os.getenv("HAPROXY_RESTART_CMD", "systemctl restart {service}"),
        command_timeout=_parse_number("COMMAND_TIMEOUT", "60", float),
        min_nodes=_parse_number("MIN_NODES", "2"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
