"""
Recordflow — Command Line

Usage:
    # Validate a batch without touching the record store
    python -m recordflow.cli dry-run batches/new_contract.yaml

    # Show the execution order
    python -m recordflow.cli order batches/new_contract.yaml

    # Run a batch through approval gating
    python -m recordflow.cli run batches/new_contract.yaml --stop-on-error
    python -m recordflow.cli run batches/new_contract.yaml --approve-all

    # Workflow policies
    python -m recordflow.cli policies list
    python -m recordflow.cli policies set create-vendor automated
    python -m recordflow.cli policies reset

    # Check the record-store connection
    python -m recordflow.cli ping

A batch file is JSON or YAML: a list of operations, or a mapping with an
``operations`` list.
"""

import argparse
import json
import sys
from pathlib import Path

import yaml

from automation.policy import PolicyEngine
from automation.runner import GatedRunner
from automation.store import PolicyStore
from recordflow.collaborator import TableAPIClient
from recordflow.config import ConfigError, Settings, load_config
from recordflow.logging import RunLogger, configure_logging
from recordflow.ordering import order
from recordflow.types import EntityKind, Operation
from recordflow.validate import dry_run


def load_operations(path: str) -> list[Operation]:
    p = Path(path)
    if not p.exists():
        print(f"Error: batch file not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(p) as f:
        data = json.load(f) if p.suffix == ".json" else yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("operations", [])
    if not isinstance(data, list):
        print(f"Error: {path} must hold a list of operations", file=sys.stderr)
        sys.exit(1)
    try:
        return [Operation.from_dict(item) for item in data]
    except (AttributeError, TypeError, ValueError) as e:
        print(f"Error: {path}: bad operation: {e}", file=sys.stderr)
        sys.exit(1)


def _kind(op: Operation) -> str:
    return op.entity_kind.value if isinstance(op.entity_kind, EntityKind) else str(op.entity_kind)


def _prompt_approver(op: Operation) -> bool:
    if not sys.stdin.isatty():
        return False
    verb = op.verb.value if op.verb else "?"
    answer = input(f"  approve {op.id} ({verb} {op.target.path})? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def cmd_dry_run(args, settings: Settings):
    report = dry_run(load_operations(args.batch))
    for entry in report.results:
        mark = "✓" if entry.valid else "✗"
        print(f"  {mark} {entry.operation_id}")
        for err in entry.errors:
            print(f"      {err}")
    print(f"\n  valid: {report.valid}")
    if not report.valid:
        sys.exit(1)


def cmd_order(args, settings: Settings):
    for i, op in enumerate(order(load_operations(args.batch)), 1):
        verb = op.verb.value if op.verb else "?"
        print(f"  {i:>3}. {op.id:<20} {_kind(op):<20} {verb:<6} {op.target.path}")


def cmd_run(args, settings: Settings):
    operations = load_operations(args.batch)
    if not settings.instance_url:
        print("Error: record_store.instance_url is not configured", file=sys.stderr)
        sys.exit(1)

    store = PolicyStore(settings.db_path)
    run_logger = RunLogger(source="cli")
    engine = PolicyEngine(
        store=store,
        countdown_seconds=settings.countdown_seconds,
        bulk_threshold=settings.bulk_threshold,
        run_logger=run_logger,
    )
    approver = (lambda op: True) if args.approve_all else _prompt_approver

    with TableAPIClient(settings.instance_url, settings.api_key, settings.timeout_seconds) as client:
        runner = GatedRunner(engine, client, approver=approver, run_logger=run_logger)
        outcome = runner.run(
            operations,
            stop_on_error=args.stop_on_error or settings.stop_on_error,
            is_bulk=args.bulk,
        )
    store.close()

    print(f"\n{'═' * 70}")
    print(f"  RUN {run_logger.run_id}")
    print(f"{'─' * 70}")
    for item in outcome.plan:
        print(f"  {item.operation.id:<20} {item.decision.value:<10} {item.policy_id}")
    print(f"{'─' * 70}")
    for result in outcome.results:
        if result.success:
            print(f"  ✓ {result.operation_id:<20} {result.produced_identifier or ''}")
        else:
            err = result.raw_outcome.error if result.raw_outcome else ""
            print(f"  ✗ {result.operation_id:<20} {err}")
    counts = outcome.report.to_dict()["counts"]
    print(f"\n  succeeded={counts['succeeded']} failed={counts['failed']} "
          f"skipped={counts['skipped']} pending={len(outcome.pending)}")

    invalid = outcome.validation.invalid_ids() if outcome.validation else []
    if outcome.report.failed or invalid:
        sys.exit(1)


def cmd_policies(args, settings: Settings):
    store = PolicyStore(settings.db_path)
    engine = PolicyEngine(
        store=store,
        countdown_seconds=settings.countdown_seconds,
        bulk_threshold=settings.bulk_threshold,
    )
    try:
        if args.action == "set":
            if not args.policy_id or not args.level:
                print("Error: policies set <policy-id> <level>", file=sys.stderr)
                sys.exit(1)
            try:
                policy = engine.set_approval_level(args.policy_id, args.level)
            except (KeyError, ValueError) as e:
                print(f"Error: {e}", file=sys.stderr)
                sys.exit(1)
            print(f"  {policy.id}: {policy.approval_level.value}")
        elif args.action == "reset":
            changed = engine.reset_all_to_manual()
            print(f"  {changed} policies reset to manual")
        else:
            print(f"  {'ID':<24} {'VERB':<7} {'COLLECTION':<30} {'LEVEL':<10} {'OK':>5} {'FAIL':>5}")
            for p in engine.list_policies():
                print(f"  {p.id:<24} {p.verb.value:<7} {p.collection:<30} "
                      f"{p.approval_level.value:<10} {p.success_count:>5} {p.failure_count:>5}")
    finally:
        store.close()


def cmd_ping(args, settings: Settings):
    if not settings.instance_url:
        print("Error: record_store.instance_url is not configured", file=sys.stderr)
        sys.exit(1)
    with TableAPIClient(settings.instance_url, settings.api_key, settings.timeout_seconds) as client:
        ok = client.test_connection()
    print(f"  {settings.instance_url}: {'reachable' if ok else 'UNREACHABLE'}")
    if not ok:
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recordflow", description="Multi-entity record orchestration")
    parser.add_argument("--config", default="recordflow.yaml", help="Base config file")
    parser.add_argument("--env", default="", help="Config profile (overrides RF_ENV)")
    parser.add_argument("--log-level", default="", help="Override logging.level")
    sub = parser.add_subparsers(dest="command")

    p_dry = sub.add_parser("dry-run", help="Validate a batch")
    p_dry.add_argument("batch")

    p_order = sub.add_parser("order", help="Show execution order")
    p_order.add_argument("batch")

    p_run = sub.add_parser("run", help="Run a batch through approval gating")
    p_run.add_argument("batch")
    p_run.add_argument("--stop-on-error", action="store_true")
    p_run.add_argument("--approve-all", action="store_true", help="Approve every manual operation")
    p_run.add_argument("--bulk", action="store_true", help="Treat the batch as a bulk change")

    p_pol = sub.add_parser("policies", help="List or change workflow policies")
    p_pol.add_argument("action", choices=["list", "set", "reset"], nargs="?", default="list")
    p_pol.add_argument("policy_id", nargs="?")
    p_pol.add_argument("level", nargs="?")

    sub.add_parser("ping", help="Test the record-store connection")
    return parser


COMMANDS = {
    "dry-run": cmd_dry_run,
    "order": cmd_order,
    "run": cmd_run,
    "policies": cmd_policies,
    "ping": cmd_ping,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        cfg = load_config(base_path=args.config, env=args.env)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    settings = Settings.from_config(cfg)
    configure_logging(level=args.log_level or settings.log_level)

    COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    main()
