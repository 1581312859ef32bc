"""Load and validate the declarative DNS and active-node YAML files."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as SchemaError

from .models import ActiveNodeMap, ConfigError, DesiredRecord, PreconditionError

PLACEHOLDER = "active_node_ip"


class RecordSpec(BaseModel):
    """Schema for a declared DNS record."""

    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    content: str
    proxied: bool = True
    ttl: int | Literal["auto"] = "auto"
    comment: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        """Strip surrounding whitespace before the length check."""
        return value.strip() if isinstance(value, str) else value

    @field_validator("type")
    @classmethod
    def _uppercase_type(cls, value: str) -> str:
        """Normalise RR type to uppercase."""
        return value.upper()

    @field_validator("ttl")
    @classmethod
    def _positive_ttl(cls, value: int | str) -> int | str:
        """Reject non-positive numeric TTLs."""
        if isinstance(value, int) and value <= 0:
            raise ValueError("ttl must be positive or 'auto'")
        return value


class ZoneSpec(BaseModel):
    """Schema for one zone block."""

    model_config = ConfigDict(extra="forbid", strict=True)

    zone: str = Field(min_length=1)
    zone_id: str | None = None
    records: list[RecordSpec] = Field(default_factory=list)


class DnsRecordsSpec(BaseModel):
    """Schema for the DNS records document."""

    model_config = ConfigDict(extra="forbid", strict=True)

    zones: list[ZoneSpec] = Field(min_length=1)


class ActiveNodeSpec(BaseModel):
    """Schema for the active-node document."""

    model_config = ConfigDict(extra="forbid", strict=True)

    active_node: str = Field(min_length=1)
    external_ips: dict[str, str] = Field(min_length=1)

    @field_validator("external_ips")
    @classmethod
    def _valid_ips(cls, value: dict[str, str]) -> dict[str, str]:
        """Require every node IP to be a literal address."""
        for node, ip in value.items():
            try:
                ipaddress.ip_address(ip)
            except ValueError as exc:
                raise ValueError(f"external_ips.{node} is not an IP address: {ip!r}") from exc
        return value

    @model_validator(mode="after")
    def _active_is_known(self) -> "ActiveNodeSpec":
        """The active node must have an IP."""
        if self.active_node not in self.external_ips:
            raise ValueError(f"active_node '{self.active_node}' is not a key of external_ips")
        return self


@dataclass
class DesiredZone:
    """Desired records for a single zone, in declaration order."""

    zone: str
    zone_id: str | None
    records: list[DesiredRecord] = field(default_factory=list)


_TEMPLATE_ENV = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


def read_yaml(path: Path) -> Any:
    """Read a YAML file, mapping I/O and syntax problems onto our errors."""
    if not path.is_file():
        raise PreconditionError(f"Required file not found: {path}")
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # noqa: BLE001
        raise ConfigError(f"Failed to parse YAML {path}: {exc}") from exc
    except OSError as exc:
        raise PreconditionError(f"Cannot read {path}: {exc}") from exc


def parse_active_node(data: Any) -> ActiveNodeMap:
    """Validate raw active-node data and return an immutable snapshot."""
    if not isinstance(data, dict):
        raise ConfigError("Active-node config must be a mapping with active_node and external_ips.")
    try:
        spec = ActiveNodeSpec.model_validate(data)
    except SchemaError as exc:
        raise ConfigError(f"Active-node validation error: {exc}") from exc
    return ActiveNodeMap(active_node=spec.active_node, external_ips=dict(spec.external_ips))


def load_active_node(path: Path) -> ActiveNodeMap:
    """Load the active-node mapping from YAML."""
    return parse_active_node(read_yaml(path))


def resolve_content(template: str, active: ActiveNodeMap) -> str:
    """Substitute ``{{active_node_ip}}`` in a record's content."""
    if "{" not in template:
        return template
    try:
        return _TEMPLATE_ENV.from_string(template).render(**{PLACEHOLDER: active.active_ip()})
    except TemplateError as exc:
        raise ConfigError(f"Cannot resolve content template {template!r}: {exc}") from exc


def parse_desired_zones(data: Any, active: ActiveNodeMap) -> list[DesiredZone]:
    """Validate raw DNS data and resolve it into desired records."""
    if not isinstance(data, dict):
        raise ConfigError("DNS records config must be a mapping with a 'zones' list.")
    try:
        spec = DnsRecordsSpec.model_validate(data)
    except SchemaError as exc:
        raise ConfigError(f"DNS records validation error: {exc}") from exc

    zones: list[DesiredZone] = []
    for zone_spec in spec.zones:
        zone = zone_spec.zone.strip().rstrip(".").lower()
        desired = DesiredZone(zone=zone, zone_id=zone_spec.zone_id)
        seen: set[tuple[str, str]] = set()
        for record in zone_spec.records:
            resolved = DesiredRecord(
                zone=zone,
                name=record.name,
                type=record.type,
                content=resolve_content(record.content, active),
                proxied=record.proxied,
                ttl=record.ttl,
                comment=record.comment or "",
            )
            key = (resolved.fqdn.lower(), resolved.type)
            if key in seen:
                raise ConfigError(f"Duplicate record {resolved.type} {resolved.fqdn} in zone {zone}.")
            seen.add(key)
            desired.records.append(resolved)
        zones.append(desired)
    return zones


def load_desired_zones(path: Path, active: ActiveNodeMap) -> list[DesiredZone]:
    """Load the DNS records YAML and resolve it against the active node."""
    return parse_desired_zones(read_yaml(path), active)

