#!/usr/bin/env python3
"""
Renewal Tracker - Main Entry Point.

Usage:
    python main.py buckets [--now YYYY-MM-DD] [--json]
    python main.py dashboard [--now YYYY-MM-DD]
    python main.py sync [--once] [--interval SECONDS]
    python main.py entities add <name> --expiry YYYY-MM-DD [--kind domain] [--amount 0]
    python main.py entities list
    python main.py entities remove <id>
    python main.py notifications list [--history]
    python main.py notifications read|acted|dismiss|delete-history <id>
    python main.py notifications read-all
    python main.py notifications clear-history
"""

import argparse
import json
import logging
import signal
import sys
import time

from config.settings import LOG_FORMAT, LOG_LEVEL
from renewals.clock import FixedClock, SystemClock
from renewals.entity import Entity, EntityKind, parse_expiry
from renewals.errors import DataQualityError, TransportError
from renewals.lifecycle import (
    categorize,
    classify,
    dashboard_summary,
    format_days_remaining,
)
from renewals.store import JsonFileStore
from web.services import build_services


# ============================================================
# Helpers
# ============================================================

def _get_clock(args):
    if not getattr(args, "now", None):
        return SystemClock()
    try:
        return FixedClock(parse_expiry(args.now))
    except DataQualityError as exc:
        print(f"Invalid --now value: {exc}")
        sys.exit(1)


def _get_services(args):
    return build_services(clock=_get_clock(args))


def _fetch_entities(services) -> list[Entity]:
    error = services.driver.refresh_entities()
    if error:
        print(f"Error: {error}")
        sys.exit(2)
    return services.driver.entities


def _file_store(services) -> JsonFileStore:
    if not isinstance(services.store, JsonFileStore):
        print("Entity management needs STORE_BACKEND=file")
        sys.exit(2)
    return services.store


def _report(result) -> None:
    print(result.message)
    for err in result.errors:
        print(f"  ! {err}")
    if not result.success:
        sys.exit(1)


# ============================================================
# Lifecycle Commands
# ============================================================

def cmd_buckets(args):
    """Show entities grouped by lifecycle bucket."""
    services = _get_services(args)
    entities = _fetch_entities(services)
    now = services.clock.now()
    buckets = categorize(entities, now)

    if args.json:
        print(json.dumps(buckets.to_dict(), indent=2, default=str))
        return

    labels = {
        "active": "Active",
        "expiring_7_days": "Expiring in 7 days",
        "expiring_30_days": "Expiring in 30 days",
        "expired": "Expired",
        "redemption": "Redemption period",
    }
    for name, members in buckets.items():
        print(f"\n{labels[name]} ({len(members)})")
        print("-" * 60)
        for e in sorted(members, key=lambda x: x.name.lower()):
            print(f"  {e.name:35s} {e.kind.value:13s} {format_days_remaining(e.expiry_date, now)}")

    if buckets.rejected:
        print(f"\nExcluded ({len(buckets.rejected)})")
        print("-" * 60)
        for r in buckets.rejected:
            print(f"  {r.name or r.entity_id:35s} {r.reason}")


def cmd_dashboard(args):
    """Show counts and renewal value per bucket."""
    services = _get_services(args)
    entities = _fetch_entities(services)
    summary = dashboard_summary(categorize(entities, services.clock.now()))

    print("\nRenewal Dashboard")
    print("=" * 50)
    print(f"  Total entities:   {summary['total_entities']}")
    for name, count in summary["counts"].items():
        print(f"  {name:17s} {count:5d}   value {summary['value'][name]:10.2f}")
    print(f"  Total value:      {summary['total_value']:.2f}")
    print(f"  Expired share:    {summary['expired_share']}%")
    print(f"  Redemption share: {summary['redemption_share']}%")
    if summary["rejected"]:
        print(f"  Excluded (bad expiry date): {summary['rejected']}")


def cmd_sync(args):
    """Run one sync pass, or poll until interrupted."""
    services = build_services(clock=_get_clock(args), interval_seconds=args.interval)
    driver = services.driver

    if args.once:
        report = driver.run_once()
        print(json.dumps(report.to_dict(), indent=2, default=str))
        if not report.success:
            sys.exit(1)
        return

    def _shutdown(signum, frame):
        driver.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    driver.start()
    print(f"Polling every {driver.interval_seconds}s. Press Ctrl+C to stop.")
    while True:
        time.sleep(1)


# ============================================================
# Entity Commands
# ============================================================

def cmd_entities_add(args):
    services = _get_services(args)
    store = _file_store(services)
    try:
        parse_expiry(args.expiry)
    except DataQualityError as exc:
        print(f"Invalid expiry date: {exc}")
        sys.exit(1)

    entity = Entity(
        name=args.name,
        expiry_date=args.expiry,
        kind=EntityKind(args.kind),
        amount=args.amount or 0.0,
    )
    store.add_entity(entity)
    state = classify(entity.expiry_date, services.clock.now())
    print(f"Entity added: {entity.name} ({entity.kind.value})")
    print(f"  ID: {entity.id}")
    print(f"  State: {state.value}")


def cmd_entities_list(args):
    services = _get_services(args)
    entities = _fetch_entities(services)
    if not entities:
        print("No entities found.")
        return
    now = services.clock.now()
    for e in sorted(entities, key=lambda x: x.name.lower()):
        state = classify(e.expiry_date, now)
        print(f"  {e.id:14s} {e.name:35s} {state.value:17s} {format_days_remaining(e.expiry_date, now)}")


def cmd_entities_remove(args):
    services = _get_services(args)
    store = _file_store(services)
    if store.remove_entity(args.entity_id):
        print(f"Entity removed: {args.entity_id}")
    else:
        print(f"Entity not found: {args.entity_id}")
        sys.exit(1)


# ============================================================
# Notification Commands
# ============================================================

def cmd_notifications_list(args):
    services = _get_services(args)
    engine = services.engine
    result = engine.refresh(include_history=args.history)
    if not result.success:
        print(f"Error: {result.message}")
        sys.exit(2)

    records = engine.history if args.history else engine.notifications
    if not records:
        print("No notifications.")
        return
    for n in records:
        flag = "*" if not n.read and not n.is_archived else " "
        extra = f" [{n.archive_reason.value}]" if n.archive_reason else ""
        print(f" {flag} {n.id:14s} {n.type.value:14s} {n.created_at:%Y-%m-%d %H:%M}  {n.message}{extra}")
    if not args.history:
        print(f"\n  Unread: {engine.unread_count}")


def _notification_action(method_name):
    def handler(args):
        services = _get_services(args)
        engine = services.engine
        engine.refresh(include_history=True)
        method = getattr(engine, method_name)
        _report(method(args.notification_id) if hasattr(args, "notification_id") else method())
    return handler


# ============================================================
# Parser
# ============================================================

def build_parser():
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Renewal tracking for domains, hosting and subscriptions"
    )
    parser.add_argument("--now", help="Evaluate as of this date (YYYY-MM-DD)")
    subparsers = parser.add_subparsers(dest="module", help="Command")

    b = subparsers.add_parser("buckets", help="Show lifecycle buckets")
    b.add_argument("--json", action="store_true", help="Print JSON")
    b.set_defaults(func=cmd_buckets)

    d = subparsers.add_parser("dashboard", help="Show bucket counts and value")
    d.set_defaults(func=cmd_dashboard)

    s = subparsers.add_parser("sync", help="Sync and evaluate notifications")
    s.add_argument("--once", action="store_true", help="Run a single pass")
    s.add_argument("--interval", type=int, help="Polling interval in seconds")
    s.set_defaults(func=cmd_sync)

    # --- Entity commands ---
    ent_parser = subparsers.add_parser("entities", help="Manage tracked entities")
    ent_sub = ent_parser.add_subparsers(dest="action")

    add = ent_sub.add_parser("add", help="Track a new entity")
    add.add_argument("name", help="Domain, hosted domain or plan name")
    add.add_argument("--expiry", required=True, help="Expiry date (YYYY-MM-DD)")
    add.add_argument("--kind", choices=[k.value for k in EntityKind], default="domain")
    add.add_argument("--amount", type=float, help="Renewal amount")
    add.set_defaults(func=cmd_entities_add)

    el = ent_sub.add_parser("list", help="List entities with their state")
    el.set_defaults(func=cmd_entities_list)

    er = ent_sub.add_parser("remove", help="Stop tracking an entity")
    er.add_argument("entity_id", help="Entity ID")
    er.set_defaults(func=cmd_entities_remove)

    # --- Notification commands ---
    ntf_parser = subparsers.add_parser("notifications", help="Notification inbox")
    ntf_sub = ntf_parser.add_subparsers(dest="action")

    nl = ntf_sub.add_parser("list", help="List notifications")
    nl.add_argument("--history", action="store_true", help="Show history instead")
    nl.set_defaults(func=cmd_notifications_list)

    for name, method, help_text in (
        ("read", "mark_read", "Mark a notification read"),
        ("acted", "mark_acted_upon", "Mark a notification acted upon"),
        ("dismiss", "dismiss", "Dismiss a notification to history"),
        ("delete-history", "delete_history_item", "Delete one history item"),
    ):
        p = ntf_sub.add_parser(name, help=help_text)
        p.add_argument("notification_id", help="Notification ID")
        p.set_defaults(func=_notification_action(method))

    ra = ntf_sub.add_parser("read-all", help="Mark all notifications read")
    ra.set_defaults(func=_notification_action("mark_all_read"))

    ch = ntf_sub.add_parser("clear-history", help="Delete all history")
    ch.set_defaults(func=_notification_action("clear_history"))

    return parser


def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    parser = build_parser()
    args = parser.parse_args()

    if not args.module:
        parser.print_help()
        sys.exit(1)

    if not hasattr(args, "func"):
        parser.parse_args([args.module, "--help"])
        sys.exit(1)

    try:
        args.func(args)
    except TransportError as exc:
        print(f"Store unreachable: {exc}")
        sys.exit(2)


if __name__ == "__main__":
    main()
