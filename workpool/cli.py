"""
Lab Pool — CLI

Operate the work pool from a terminal: the same operations the API
exposes, against the store named in pool_config.yaml.

Usage:
    # Upstream: put a test in the pool
    python -m workpool.cli create --kind lab_test --urgency STAT \\
        --payload '{"test": "Glucose", "patient_ref": "P-1001"}'

    # Worker: browse, claim, start, complete
    python -m workpool.cli available
    python -m workpool.cli claim itm_0123456789ab --worker tech-1
    python -m workpool.cli start itm_0123456789ab --worker tech-1
    python -m workpool.cli complete itm_0123456789ab --worker tech-1 \\
        --result 'Glucose=5.4 mmol/L' --result 'Ketones=trace'

    # Admin: find and cancel abandoned claims
    python -m workpool.cli stale --hours 4
    python -m workpool.cli admin-cancel itm_0123456789ab --admin lead-1 --reason "shift ended"
"""

import argparse
import json
import sys
import time
from pathlib import Path

from workpool.errors import PoolError
from workpool.runtime import WorkPool, create_pool
from workpool.types import PoolItem


def _print_item(item: PoolItem):
    print(json.dumps(item.to_dict(), indent=2, default=str))


def _print_table(items: list[PoolItem]):
    if not items:
        print("No items.")
        return
    print(f"{'ITEM':18s} {'STATUS':12s} {'URGENCY':8s} {'KIND':12s} {'OWNER':12s} AGE")
    print(f"{'─' * 78}")
    now = time.time()
    for i in items:
        age_min = (now - i.created_at) / 60
        print(f"{i.item_id:18s} {i.status.value:12s} {i.urgency.value:8s} "
              f"{i.kind[:12]:12s} {(i.owner_id or '—')[:12]:12s} {age_min:.0f}m")


def _parse_result(text: str) -> dict:
    """'Label=value unit' → result entry dict. Flag with a trailing '!'."""
    label, sep, rest = text.partition("=")
    if not sep:
        return {"label": label.strip(), "value": ""}
    flag = "NORMAL"
    rest = rest.strip()
    if rest.endswith("!"):
        flag = "CRITICAL"
        rest = rest[:-1].strip()
    value, _, unit = rest.partition(" ")
    return {"label": label.strip(), "value": value, "unit": unit.strip(), "flag": flag}


def cmd_create(args, pool: WorkPool):
    """Add an item (or a group of items) to the pool."""
    payload = json.loads(args.payload) if args.payload else {}
    item = pool.create_item(
        kind=args.kind,
        payload=payload,
        urgency=args.urgency,
        group_id=args.group or "",
        eligible=not args.hold,
    )
    _print_item(item)


def cmd_available(args, pool: WorkPool):
    """List claimable items, most urgent first."""
    _print_table(pool.list_available(urgency=args.urgency, kind=args.kind))


def cmd_mine(args, pool: WorkPool):
    """List the worker's items."""
    _print_table(pool.list_mine(
        args.worker, status=args.status, include_history=args.history,
    ))


def cmd_claim(args, pool: WorkPool):
    _print_item(pool.claim(args.item_id, args.worker))


def cmd_start(args, pool: WorkPool):
    _print_item(pool.start(args.item_id, args.worker))


def cmd_complete(args, pool: WorkPool):
    """Complete an item with results from --result or --results-file."""
    if args.results_file:
        with open(args.results_file) as f:
            results = json.load(f)
    else:
        results = [_parse_result(r) for r in args.result or []]
    _print_item(pool.complete(args.item_id, args.worker, results, notes=args.notes))


def cmd_cancel(args, pool: WorkPool):
    _print_item(pool.cancel(args.item_id, args.worker, args.reason))


def cmd_admin_cancel(args, pool: WorkPool):
    _print_item(pool.admin_cancel(args.item_id, args.admin, args.reason))


def cmd_release(args, pool: WorkPool):
    """Release held items for claiming (the order was paid)."""
    if args.group:
        released = pool.release_group(args.group)
        print(f"Released {len(released)} item(s) in group {args.group}")
        return
    _print_item(pool.release(args.item_id))


def cmd_show(args, pool: WorkPool):
    _print_item(pool.get(args.item_id))


def cmd_results(args, pool: WorkPool):
    """Completed items with their results."""
    items = pool.list_results(kind=args.kind, critical_only=args.critical)
    if not items:
        print("No results.")
        return
    for item in items:
        marker = "!" if item.has_critical else " "
        print(f"{marker} {item.item_id}  {item.kind}  by {item.closed_by}")
        for r in item.result or []:
            print(f"    {r.label:20s} {r.value} {r.unit}  [{r.flag.value}]")


def cmd_stale(args, pool: WorkPool):
    """Owned items with no progress inside the window."""
    window = args.hours * 3600 if args.hours is not None else None
    _print_table(pool.list_stale(window))


def cmd_group(args, pool: WorkPool):
    print(json.dumps(pool.group_summary(args.group_id), indent=2))


def cmd_stats(args, pool: WorkPool):
    """Show pool statistics."""
    print(json.dumps(pool.stats(), indent=2))


COMMANDS = {
    "create": cmd_create,
    "available": cmd_available,
    "mine": cmd_mine,
    "claim": cmd_claim,
    "start": cmd_start,
    "complete": cmd_complete,
    "cancel": cmd_cancel,
    "admin-cancel": cmd_admin_cancel,
    "release": cmd_release,
    "show": cmd_show,
    "results": cmd_results,
    "stale": cmd_stale,
    "group": cmd_group,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    _project_root = Path(__file__).resolve().parent.parent

    parser = argparse.ArgumentParser(
        description="Lab Pool — shared work pool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", default=str(_project_root / "pool_config.yaml"),
        help="Pool config YAML (default: pool_config.yaml in project root)",
    )
    parser.add_argument("--env", default="", help="Config overlay profile (dev, prod, ...)")

    subs = parser.add_subparsers(dest="command", help="Command")

    # create
    create_p = subs.add_parser("create", help="Add an item to the pool")
    create_p.add_argument("--kind", "-k", default="lab_test")
    create_p.add_argument("--urgency", "-u", default="ROUTINE")
    create_p.add_argument("--payload", "-p", help="JSON payload")
    create_p.add_argument("--group", "-g", help="Upstream order / treatment id")
    create_p.add_argument("--hold", action="store_true", help="Create held (not claimable until released)")

    # available
    avail_p = subs.add_parser("available", help="List claimable items")
    avail_p.add_argument("--urgency", "-u")
    avail_p.add_argument("--kind", "-k")

    # mine
    mine_p = subs.add_parser("mine", help="List a worker's items")
    mine_p.add_argument("--worker", "-w", required=True)
    mine_p.add_argument("--status", "-s")
    mine_p.add_argument("--history", action="store_true", help="Include completed/cancelled")

    # claim / start
    for name, help_text in (("claim", "Claim a pending item"), ("start", "Start a claimed item")):
        p = subs.add_parser(name, help=help_text)
        p.add_argument("item_id")
        p.add_argument("--worker", "-w", required=True)

    # complete
    complete_p = subs.add_parser("complete", help="Complete an in-progress item")
    complete_p.add_argument("item_id")
    complete_p.add_argument("--worker", "-w", required=True)
    complete_p.add_argument("--result", "-r", action="append",
                            help="'Label=value unit', trailing '!' flags CRITICAL (repeatable)")
    complete_p.add_argument("--results-file", help="JSON list of result entries")
    complete_p.add_argument("--notes", "-n", default="")

    # cancel
    cancel_p = subs.add_parser("cancel", help="Cancel an owned item")
    cancel_p.add_argument("item_id")
    cancel_p.add_argument("--worker", "-w", required=True)
    cancel_p.add_argument("--reason", required=True)

    # admin-cancel
    admin_p = subs.add_parser("admin-cancel", help="Cancel an abandoned claim")
    admin_p.add_argument("item_id")
    admin_p.add_argument("--admin", "-a", required=True)
    admin_p.add_argument("--reason", required=True)

    # release
    release_p = subs.add_parser("release", help="Release held items for claiming")
    release_p.add_argument("item_id", nargs="?")
    release_p.add_argument("--group", "-g")

    # show
    show_p = subs.add_parser("show", help="Show one item")
    show_p.add_argument("item_id")

    # results
    results_p = subs.add_parser("results", help="List completed results")
    results_p.add_argument("--kind", "-k")
    results_p.add_argument("--critical", action="store_true", help="Only results with a CRITICAL flag")

    # stale
    stale_p = subs.add_parser("stale", help="List stuck claims")
    stale_p.add_argument("--hours", type=float, help="Idle window (default: stale_after_seconds)")

    # group
    group_p = subs.add_parser("group", help="Summarize an upstream order")
    group_p.add_argument("group_id")

    # stats
    subs.add_parser("stats", help="Show pool statistics")

    return parser


def main(argv=None, pool: WorkPool | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    if args.command == "release" and not (args.item_id or args.group):
        print("Error: give an item_id or --group", file=sys.stderr)
        return 1

    owns_pool = pool is None
    if owns_pool:
        if not Path(args.config).exists():
            print(f"Warning: config not found at {args.config}, using defaults",
                  file=sys.stderr)
        pool = create_pool(config_path=args.config, env=args.env, log_format="text")

    try:
        COMMANDS[args.command](args, pool)
    except PoolError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        if getattr(e, "field_errors", None):
            for fe in e.field_errors:
                print(f"  - {fe}", file=sys.stderr)
        return 2
    finally:
        # queued webhook posts go out before the process exits
        if owns_pool:
            pool.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
