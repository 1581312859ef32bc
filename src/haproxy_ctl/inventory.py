"""Node inventory: where each node keeps its live config and backups."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as SchemaError

from .backup import BackupStore
from .config import AppConfig
from .haproxy import CommandReloader, CommandValidator
from .models import ConfigError
from .yaml_loader import read_yaml


class NodeSpec(BaseModel):
    """Schema for one inventory entry."""

    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1)
    live_config: str = Field(min_length=1)
    backup_dir: str = Field(min_length=1)
    service: str = "haproxy"
    check_command: str | None = None
    reload_command: str | None = None
    restart_command: str | None = None


class InventorySpec(BaseModel):
    """Schema for the inventory document."""

    model_config = ConfigDict(extra="forbid", strict=True)

    nodes: list[NodeSpec] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_ids(self) -> "InventorySpec":
        ids = [node.id for node in self.nodes]
        duplicates = sorted({node_id for node_id in ids if ids.count(node_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate node ids: {', '.join(duplicates)}")
        return self


@dataclass(frozen=True)
class NodeTarget:
    """Everything needed to deploy to one node."""

    node_id: str
    live_config: Path
    backup_dir: Path
    service: str
    check_command: str
    reload_command: str
    restart_command: str
    command_timeout: float = 60.0

    def backup_store(self) -> BackupStore:
        return BackupStore(self.backup_dir, self.node_id, basename=self.live_config.name)

    def validator(self) -> CommandValidator:
        return CommandValidator(self.check_command, timeout=self.command_timeout, node_id=self.node_id)

    def reloader(self) -> CommandReloader:
        return CommandReloader(
            self.reload_command,
            self.restart_command,
            timeout=self.command_timeout,
            node_id=self.node_id,
        )


def _local_node(config: AppConfig) -> NodeTarget:
    """The single node described by the environment."""
    return NodeTarget(
        node_id=config.node_id,
        live_config=config.haproxy_cfg,
        backup_dir=config.backup_dir,
        service=config.haproxy_service,
        check_command=config.check_command,
        reload_command=config.reload_command,
        restart_command=config.restart_command,
        command_timeout=config.command_timeout,
    )


def load_inventory(config: AppConfig, path: Path | None = None) -> dict[str, NodeTarget]:
    """Return nodes keyed by id, in inventory order.

    Without an inventory file the environment describes a single local node.
    """
    path = path or config.nodes_file
    if not path.is_file():
        node = _local_node(config)
        return {node.node_id: node}

    data = read_yaml(path)
    try:
        spec = InventorySpec.model_validate(data)
    except SchemaError as exc:
        raise ConfigError(f"Node inventory validation error: {exc}") from exc

    return {
        node.id: NodeTarget(
            node_id=node.id,
            live_config=Path(node.live_config),
            backup_dir=Path(node.backup_dir),
            service=node.service,
            check_command=node.check_command or config.check_command,
            reload_command=node.reload_command or config.reload_command,
            restart_command=node.restart_command if node.restart_command is not None else config.restart_command,
            command_timeout=config.command_timeout,
        )
        for node in spec.nodes
    }


def select_nodes(inventory: dict[str, NodeTarget], node_ids: Sequence[str] | None) -> list[NodeTarget]:
    """Return the requested nodes in the caller's order (all nodes if none given)."""
    if not node_ids:
        return list(inventory.values())
    unknown = [node_id for node_id in node_ids if node_id not in inventory]
    if unknown:
        raise ConfigError(f"Unknown node(s): {', '.join(unknown)}")
    if len(set(node_ids)) != len(node_ids):
        raise ConfigError("A node may appear only once in a rollout sequence.")
    return [inventory[node_id] for node_id in node_ids]
