"""Diff utilities for DNS zones."""

from __future__ import annotations

from typing import Iterable, Sequence

from .models import ActionKind, DesiredRecord, ReconciliationAction, RemoteRecord


def _first_match(fqdn: str, remote: Sequence[RemoteRecord]) -> RemoteRecord | None:
    """Return the first remote record carrying this name, whatever its type."""
    wanted = fqdn.lower()
    for record in remote:
        if record.name.lower() == wanted:
            return record
    return None


def apply_filter(records: Iterable[DesiredRecord], name_filter: str | None) -> list[DesiredRecord]:
    """Keep only records whose FQDN contains the filter substring."""
    if not name_filter:
        return list(records)
    return [record for record in records if name_filter in record.fqdn]


def plan_zone(
    desired: Sequence[DesiredRecord],
    remote: Sequence[RemoteRecord],
    name_filter: str | None = None,
    force_overwrite: bool = False,
) -> list[ReconciliationAction]:
    """Produce the ordered action list for one zone.

    Remote records are matched first-come by name only, in the order the
    provider returned them. Remote records with no desired counterpart never
    produce an action.
    """
    actions: list[ReconciliationAction] = []
    for record in apply_filter(desired, name_filter):
        match = _first_match(record.fqdn, remote)
        if match is None:
            actions.append(ReconciliationAction(ActionKind.CREATE, record, None, "not present remotely"))
        elif match.type.upper() == record.type:
            actions.append(ReconciliationAction(ActionKind.UPDATE, record, match, "present remotely"))
        elif force_overwrite:
            reason = f"type conflict ({match.type} -> {record.type}), will delete and recreate"
            actions.append(ReconciliationAction(ActionKind.CONFLICT_REPLACE, record, match, reason))
        else:
            reason = f"type conflict ({match.type} -> {record.type}), set FORCE_OVERWRITE to replace"
            actions.append(ReconciliationAction(ActionKind.CONFLICT_SKIP, record, match, reason))
    return actions
