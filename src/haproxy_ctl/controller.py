"""High-level orchestration of DNS reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .cloudflare import CloudflareClient, DnsProvider
from .config import AppConfig
from .diffing import plan_zone
from .models import (
    NOT_ATTEMPTED,
    ActionKind,
    ActionResult,
    ActiveNodeMap,
    AuthorizationError,
    ConflictError,
    PreconditionError,
    ProviderError,
    ReconciliationAction,
    RemoteRecord,
    SyncReport,
    ZoneSyncReport,
)
from .yaml_loader import DesiredZone, load_active_node, load_desired_zones

LOG = logging.getLogger("haproxy_ctl")


@dataclass
class PreparedZone:
    """A desired zone paired with its provider id."""

    desired: DesiredZone
    zone_id: str


@dataclass
class PreparedRun:
    """Everything a run reads up front; never mutated afterwards."""

    active: ActiveNodeMap
    zones: list[PreparedZone]


class DnsSyncController:
    """Coordinates check/plan/apply runs against the DNS provider."""

    def __init__(self, config: AppConfig, provider: DnsProvider | None = None):
        """Store configuration and the provider used for subsequent runs."""
        self.config = config
        self._provider = provider

    @property
    def provider(self) -> DnsProvider:
        """Return the provider, building the Cloudflare client on first use."""
        if self._provider is None:
            self._provider = CloudflareClient(self.config.api_token, self.config.api_url, self.config.api_timeout)
        return self._provider

    def check(self, records_file: Path | None = None, active_node_file: Path | None = None) -> PreparedRun:
        """Validate credentials, declarative files and provider access."""
        if not self.config.api_token:
            raise PreconditionError("CLOUDFLARE_API_TOKEN environment variable is not set.")
        active = load_active_node(active_node_file or self.config.active_node_file)
        LOG.info("Active node: %s (%s)", active.active_node, active.active_ip())
        zones = load_desired_zones(records_file or self.config.records_file, active)

        prepared: list[PreparedZone] = []
        for desired in zones:
            zone_id = self._resolve_zone_id(desired, single_zone=len(zones) == 1)
            try:
                info = self.provider.get_zone(zone_id)
            except ProviderError as exc:
                raise PreconditionError(f"Cannot access zone {desired.zone} ({zone_id}): {exc}") from exc
            LOG.info("Connected to zone: %s", info.get("name", desired.zone))
            prepared.append(PreparedZone(desired=desired, zone_id=zone_id))
        return PreparedRun(active=active, zones=prepared)

    def plan(
        self,
        records_file: Path | None = None,
        active_node_file: Path | None = None,
        name_filter: str | None = None,
        force_overwrite: bool | None = None,
    ) -> SyncReport:
        """Compute actions for every zone without writing anything."""
        run = self.check(records_file, active_node_file)
        return self._plan_run(run, "plan", name_filter, force_overwrite)

    def apply(
        self,
        records_file: Path | None = None,
        active_node_file: Path | None = None,
        name_filter: str | None = None,
        force_overwrite: bool | None = None,
    ) -> SyncReport:
        """Plan and then execute every action in plan order."""
        run = self.check(records_file, active_node_file)
        report = self._plan_run(run, "apply", name_filter, force_overwrite)
        for zone_report in report.zones:
            if report.aborted:
                zone_report.results.extend(_not_attempted(zone_report.actions))
                continue
            report.aborted = self._execute_zone(zone_report)
        counts = report.summary()
        LOG.info(
            "Apply finished: %s succeeded, %s failed, %s conflicts, %s not attempted",
            counts["succeeded"],
            counts["failed"],
            counts["conflicts"],
            counts["not_attempted"],
        )
        return report

    def _resolve_zone_id(self, desired: DesiredZone, single_zone: bool) -> str:
        """Pick the zone id from YAML, the environment, or a provider lookup."""
        if desired.zone_id:
            return desired.zone_id
        if single_zone and self.config.zone_id:
            return self.config.zone_id
        try:
            return self.provider.find_zone_id(desired.zone)
        except ProviderError as exc:
            raise PreconditionError(
                f"No zone id for {desired.zone}; set CLOUDFLARE_ZONE_ID or zone_id ({exc})"
            ) from exc

    def _plan_run(
        self,
        run: PreparedRun,
        mode: str,
        name_filter: str | None,
        force_overwrite: bool | None,
    ) -> SyncReport:
        """Fetch remote state for each zone and diff it against desired state."""
        if name_filter is None:
            name_filter = self.config.dns_filter or None
        if force_overwrite is None:
            force_overwrite = self.config.force_overwrite

        report = SyncReport(mode=mode)
        for zone in run.zones:
            remote = self._fetch_remote(zone)
            actions = plan_zone(zone.desired.records, remote, name_filter=name_filter, force_overwrite=force_overwrite)
            LOG.info("Planned %s actions for %s", len(actions), zone.desired.zone)
            report.zones.append(ZoneSyncReport(zone=zone.desired.zone, zone_id=zone.zone_id, actions=actions))
        return report

    def _fetch_remote(self, zone: PreparedZone) -> list[RemoteRecord]:
        """Return the remote record set for a zone."""
        try:
            return self.provider.list_records(zone.zone_id, per_page=self.config.page_size)
        except ProviderError as exc:
            raise PreconditionError(f"Cannot list records for {zone.desired.zone}: {exc}") from exc

    def _execute_zone(self, zone_report: ZoneSyncReport) -> bool:
        """Execute a zone's actions; return True if the run must stop."""
        for index, action in enumerate(zone_report.actions):
            try:
                self._execute_action(zone_report.zone_id, action)
            except ConflictError as exc:
                LOG.error("%s: %s", action.desired.fqdn, exc)
                zone_report.results.append(ActionResult(action, ok=False, attempted=False, error=str(exc)))
            except AuthorizationError as exc:
                LOG.error("Authorization failed, aborting remaining actions: %s", exc)
                zone_report.results.append(ActionResult(action, ok=False, error=str(exc)))
                zone_report.results.extend(_not_attempted(zone_report.actions[index + 1 :]))
                return True
            except ProviderError as exc:
                LOG.error("Failed to %s %s: %s", action.kind.value, action.desired.fqdn, exc)
                zone_report.results.append(ActionResult(action, ok=False, error=str(exc)))
            else:
                zone_report.results.append(ActionResult(action, ok=True))
        return False

    def _execute_action(self, zone_id: str, action: ReconciliationAction) -> None:
        """Issue the provider calls for one action."""
        record = action.desired
        if action.kind is ActionKind.CONFLICT_SKIP:
            raise ConflictError(action.reason)
        if action.kind is ActionKind.CONFLICT_REPLACE:
            LOG.warning("%s: %s", record.fqdn, action.reason)
            self.provider.delete_record(zone_id, action.remote.id)
            LOG.info("Deleted: %s (%s %s)", record.fqdn, action.remote.type, action.remote.id)
            self.provider.create_record(zone_id, record.payload())
            LOG.info("Created: %s", record.fqdn)
        elif action.kind is ActionKind.CREATE:
            self.provider.create_record(zone_id, record.payload())
            LOG.info("Created: %s", record.fqdn)
        else:
            self.provider.update_record(zone_id, action.remote.id, record.payload())
            LOG.info("Updated: %s", record.fqdn)


def _not_attempted(actions: list[ReconciliationAction]) -> list[ActionResult]:
    return [
        ActionResult(action, ok=False, attempted=False, error=NOT_ATTEMPTED)
        for action in actions
    ]


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
