"""Add, remove and fail over nodes in the active-node file."""

from __future__ import annotations

import ipaddress
import logging
import re
from pathlib import Path
from typing import Any

import yaml

from .backup import atomic_write
from .models import ActiveNodeMap, ConfigError
from .yaml_loader import parse_active_node, read_yaml

LOG = logging.getLogger("haproxy_ctl.nodes")

NODE_NAME_PATTERN = re.compile(r"^ha[0-9]+$")


def _validate_node_name(node: str) -> None:
    if not NODE_NAME_PATTERN.match(node):
        raise ConfigError(f"Invalid node name: {node}. Node names must follow the pattern ha01, ha02, ...")


def _validate_ipv4(ip: str) -> None:
    try:
        ipaddress.IPv4Address(ip)
    except ValueError as exc:
        raise ConfigError(f"Invalid IP address: {ip}") from exc


def _load(path: Path) -> tuple[dict[str, Any], ActiveNodeMap]:
    """Return the raw document (to preserve extra keys) and its validated view."""
    data = read_yaml(path)
    return data, parse_active_node(data)


def _save(path: Path, data: dict[str, Any]) -> ActiveNodeMap:
    active = parse_active_node(data)
    atomic_write(path, yaml.safe_dump(data, sort_keys=False))
    return active


def list_nodes(path: Path) -> ActiveNodeMap:
    """Return the current active-node snapshot."""
    return _load(path)[1]


def add_node(path: Path, node: str, ip: str) -> ActiveNodeMap:
    """Register a new node and its external IP."""
    _validate_node_name(node)
    _validate_ipv4(ip)
    data, current = _load(path)
    if node in current.external_ips:
        raise ConfigError(f"Node {node} already exists with IP {current.external_ips[node]}")
    data["external_ips"] = {**current.external_ips, node: ip}
    LOG.info("Added %s: %s to %s", node, ip, path)
    return _save(path, data)


def remove_node(path: Path, node: str, min_nodes: int = 2) -> ActiveNodeMap:
    """Drop a node, refusing the active node or going below the HA minimum."""
    _validate_node_name(node)
    data, current = _load(path)
    if node not in current.external_ips:
        raise ConfigError(f"Node {node} is not configured.")
    if current.active_node == node:
        raise ConfigError(f"Cannot remove {node}: it is the active node. Fail over to another node first.")
    if len(current.external_ips) - 1 < min_nodes:
        raise ConfigError(f"Cannot remove {node}: minimum {min_nodes} nodes required for HA.")
    data["external_ips"] = {key: value for key, value in current.external_ips.items() if key != node}
    LOG.info("Removed %s from %s", node, path)
    return _save(path, data)


def failover(path: Path, node: str) -> ActiveNodeMap:
    """Point the active node at another configured node."""
    data, current = _load(path)
    if node not in current.external_ips:
        raise ConfigError(f"Cannot fail over to {node}: not present in external_ips.")
    if current.active_node == node:
        LOG.info("%s is already the active node", node)
        return current
    data["active_node"] = node
    LOG.info("Active node changed: %s -> %s", current.active_node, node)
    return _save(path, data)
