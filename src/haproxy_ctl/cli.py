"""Command-line entry point for haproxy-ctl."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import AppConfig, load_config
from .controller import DnsSyncController, configure_logging
from .inventory import load_inventory, select_nodes
from .models import HaproxyCtlError, NodeDeploymentState, ReconciliationAction, RolloutReport, SyncReport
from .nodes import add_node, failover, list_nodes, remove_node
from .rollback import RollbackController
from .rollout import run_rollout


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Reconcile Cloudflare DNS and roll out HAProxy configuration.")
    parser.add_argument("--log-level", help="Override log level (default from config).")

    subparsers = parser.add_subparsers(dest="command", required=True)
    check_parser = subparsers.add_parser("check", help="Validate config files, credentials and API access.")
    _register_dns_arguments(check_parser)

    plan_parser = subparsers.add_parser("plan", help="Show DNS actions without changing anything.")
    _register_dns_arguments(plan_parser)
    _register_plan_arguments(plan_parser)
    plan_parser.add_argument("--json", help="Optional path to write the plan as JSON.")

    apply_parser = subparsers.add_parser("apply", help="Create/update DNS records.")
    _register_dns_arguments(apply_parser)
    _register_plan_arguments(apply_parser)

    deploy_parser = subparsers.add_parser("deploy", help="Roll a configuration out to nodes, one at a time.")
    deploy_parser.add_argument("--candidate", required=True, help="Path to the candidate haproxy.cfg.")
    deploy_parser.add_argument(
        "--node",
        action="append",
        help="Node id to deploy to, in order. Can be repeated (default: every inventory node).",
    )
    deploy_parser.add_argument("--nodes-file", help="Node inventory YAML (default NODES_FILE).")

    rollback_parser = subparsers.add_parser("rollback", help="Restore a node's LKG or newest valid backup.")
    rollback_parser.add_argument("--node", help="Node id to roll back (default NODE_ID).")
    rollback_parser.add_argument("--nodes-file", help="Node inventory YAML (default NODES_FILE).")

    nodes_parser = subparsers.add_parser("nodes", help="Manage nodes in the active-node file.")
    nodes_parser.add_argument("--active-node", help="Path to the active-node YAML.")
    node_commands = nodes_parser.add_subparsers(dest="nodes_command", required=True)
    node_commands.add_parser("list", help="List configured nodes.")
    add_parser = node_commands.add_parser("add", help="Add a node.")
    add_parser.add_argument("node")
    add_parser.add_argument("ip")
    remove_parser = node_commands.add_parser("remove", help="Remove a node.")
    remove_parser.add_argument("node")
    failover_parser = node_commands.add_parser("failover", help="Make another node the active node.")
    failover_parser.add_argument("node")

    return parser


def _register_dns_arguments(subparser: argparse.ArgumentParser) -> None:
    """Register arguments shared by check/plan/apply."""
    subparser.add_argument("--records", help="Path to the DNS records YAML (default DNS_RECORDS_FILE).")
    subparser.add_argument("--active-node", help="Path to the active-node YAML (default ACTIVE_NODE_FILE).")


def _register_plan_arguments(subparser: argparse.ArgumentParser) -> None:
    """Register arguments shared by plan/apply."""
    subparser.add_argument("--filter", help="Only process records whose FQDN contains this text.")
    subparser.add_argument(
        "--force-overwrite",
        action="store_true",
        default=None,
        help="Delete and recreate records whose type differs.",
    )


def _optional_path(value: str | None) -> Path | None:
    return Path(value) if value else None


def _serialize_action(action: ReconciliationAction) -> dict[str, object]:
    """Convert an action into JSON-serialisable data."""
    record = action.desired
    return {
        "action": action.kind.value,
        "name": record.fqdn,
        "type": record.type,
        "content": record.content,
        "proxied": record.proxied,
        "ttl": record.ttl,
        "remote_id": action.remote.id if action.remote else None,
        "remote_type": action.remote.type if action.remote else None,
        "reason": action.reason,
    }


def _emit_plan(report: SyncReport, json_path: str | None = None) -> None:
    """Print the planned actions, optionally writing JSON."""
    for zone in report.zones:
        print(f"Zone: {zone.zone}")
        print(f"Actions: {len(zone.actions)}")
        for action in zone.actions:
            print(f" {action.describe()}")
    if json_path:
        payload = {
            "mode": report.mode,
            "zones": [
                {"zone": zone.zone, "zone_id": zone.zone_id, "actions": [_serialize_action(a) for a in zone.actions]}
                for zone in report.zones
            ],
        }
        Path(json_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote plan JSON to {json_path}")


def _emit_results(report: SyncReport) -> None:
    """Print per-action results and the final summary."""
    for zone in report.zones:
        print(f"Zone: {zone.zone}")
        for result in zone.results:
            status = "OK" if result.ok else ("FAILED" if result.attempted else "SKIPPED")
            line = f" [{status}] {result.action.describe()}"
            if result.error:
                line += f" ({result.error})"
            print(line)
    counts = report.summary()
    print(
        f"Summary: {counts['planned']} planned, {counts['succeeded']} succeeded, "
        f"{counts['failed']} failed, {counts['conflicts']} conflicts, {counts['not_attempted']} not attempted"
    )


def _describe_node(state: NodeDeploymentState) -> str:
    line = f" {state.node_id}: {state.phase.value}"
    if state.failed_phase is not None:
        line += f" (failed in {state.failed_phase.value}: {state.error})"
    if state.restored_from is not None:
        line += f" restored from {state.restored_from.name}"
    return line


def _emit_rollout(report: RolloutReport) -> None:
    """Print the per-node result log and summary."""
    print("Rollout results:")
    for state in report.results:
        print(_describe_node(state))
    for node_id in report.not_attempted:
        print(f" {node_id}: not attempted")
    print("Rollout succeeded." if report.succeeded() else "Rollout FAILED.")


def _run_check(controller: DnsSyncController, args: argparse.Namespace) -> int:
    """Execute the check command."""
    run = controller.check(_optional_path(args.records), _optional_path(args.active_node))
    print(f"Prerequisites validated for {len(run.zones)} zone(s); active node {run.active.active_node}.")
    return 0


def _run_plan(controller: DnsSyncController, args: argparse.Namespace) -> int:
    """Execute the plan command."""
    report = controller.plan(
        _optional_path(args.records),
        _optional_path(args.active_node),
        name_filter=args.filter,
        force_overwrite=args.force_overwrite,
    )
    _emit_plan(report, getattr(args, "json", None))
    return 0


def _run_apply(controller: DnsSyncController, args: argparse.Namespace) -> int:
    """Execute the apply command."""
    report = controller.apply(
        _optional_path(args.records),
        _optional_path(args.active_node),
        name_filter=args.filter,
        force_overwrite=args.force_overwrite,
    )
    _emit_results(report)
    return 1 if report.has_failures() else 0


def _run_deploy(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the deploy command."""
    inventory = load_inventory(config, _optional_path(args.nodes_file))
    nodes = select_nodes(inventory, args.node)
    report = run_rollout(nodes, Path(args.candidate))
    _emit_rollout(report)
    return 0 if report.succeeded() else 1


def _run_rollback(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the rollback command."""
    inventory = load_inventory(config, _optional_path(args.nodes_file))
    node_id = args.node or config.node_id
    [node] = select_nodes(inventory, [node_id])
    restored = RollbackController.for_node(node).rollback(reason="manual rollback")
    print(f"{node.node_id}: restored from {restored.path.name}")
    return 0


def _run_nodes(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the nodes command."""
    path = _optional_path(args.active_node) or config.active_node_file
    if args.nodes_command == "add":
        active = add_node(path, args.node, args.ip)
    elif args.nodes_command == "remove":
        active = remove_node(path, args.node, min_nodes=config.min_nodes)
    elif args.nodes_command == "failover":
        active = failover(path, args.node)
    else:
        active = list_nodes(path)
    print(f"Active node: {active.active_node}")
    print("Configured nodes:")
    for node, ip in active.external_ips.items():
        print(f"  {node}: {ip}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level)
        if args.command in {"check", "plan", "apply"}:
            controller = DnsSyncController(config)
            handler = {"check": _run_check, "plan": _run_plan, "apply": _run_apply}[args.command]
            code = handler(controller, args)
        elif args.command == "deploy":
            code = _run_deploy(config, args)
        elif args.command == "rollback":
            code = _run_rollback(config, args)
        elif args.command == "nodes":
            code = _run_nodes(config, args)
        else:  # pragma: no cover - argparse ensures we never reach here
            parser.error(f"Unsupported command {args.command}")
    except HaproxyCtlError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(3)
    sys.exit(code)


if __name__ == "__main__":
    main()
