#!/usr/bin/env python3
"""
Subscription Management Script

List, add, pause, resume and delete gift subscriptions, and show the
monitoring history of a subscription.

Usage:
    python scripts/manage_subscriptions.py list [--user USER_ID]
    python scripts/manage_subscriptions.py add USER_ID "Plush Pepe" --model "Cozy Galaxy"
    python scripts/manage_subscriptions.py pause SUBSCRIPTION_ID
    python scripts/manage_subscriptions.py history SUBSCRIPTION_ID --limit 20
"""

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.database import (
    init_database,
    create_subscription,
    list_all_subscriptions,
    list_user_subscriptions,
    set_subscription_active,
    delete_subscription,
    get_history_for,
    get_history_stats,
)
from utils.number_parser import format_count


def print_subscription(sub):
    status = "active" if sub['is_active'] else "paused"
    filters = ", ".join(
        f"{key}={sub[key]}" for key in ('model', 'background', 'pattern') if sub.get(key)
    )
    print(f"#{sub['subscription_id']} user {sub['user_id']}: {sub['item_name']}"
          f"{f' ({filters})' if filters else ''} [{status}]")


def cmd_list(args):
    subscriptions = list_user_subscriptions(args.user) if args.user else list_all_subscriptions()
    if not subscriptions:
        print("No subscriptions found.")
        return
    for sub in subscriptions:
        print_subscription(sub)


def cmd_add(args):
    sub = create_subscription(
        args.user_id,
        args.item_name,
        model=args.model,
        background=args.background,
        pattern=args.pattern,
    )
    if not sub:
        print("❌ Could not create subscription")
        sys.exit(1)
    print("✅ Subscription created:")
    print_subscription(sub)


def cmd_pause(args):
    _set_active(args.subscription_id, False)


def cmd_resume(args):
    _set_active(args.subscription_id, True)


def _set_active(subscription_id, active):
    sub = set_subscription_active(subscription_id, active)
    if not sub:
        print(f"❌ Subscription {subscription_id} not found")
        sys.exit(1)
    print_subscription(sub)


def cmd_delete(args):
    if delete_subscription(args.subscription_id):
        print(f"🗑️  Subscription {args.subscription_id} deleted")
    else:
        print(f"❌ Subscription {args.subscription_id} not found")
        sys.exit(1)


def cmd_history(args):
    stats = get_history_stats(args.subscription_id)
    if stats and stats['total_checks']:
        print(f"📊 {stats['total_checks']} checks, {stats['total_changes']} changes, "
              f"count {format_count(stats['min_count'])}..{format_count(stats['max_count'])}")

    history = get_history_for(args.subscription_id, limit=args.limit)
    if not history:
        print("No history recorded.")
        return
    for record in history:
        marker = "🔔" if record['has_changed'] else "  "
        print(f"{marker} {record['checked_at']:%Y-%m-%d %H:%M:%S}  {format_count(record['count'])}")


def build_parser():
    parser = argparse.ArgumentParser(description="Manage gift subscriptions")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List subscriptions")
    p.add_argument("--user", type=int, help="Only this Telegram user")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("add", help="Add a subscription")
    p.add_argument("user_id", type=int)
    p.add_argument("item_name")
    p.add_argument("--model")
    p.add_argument("--background")
    p.add_argument("--pattern")
    p.set_defaults(func=cmd_add)

    for name, func in (("pause", cmd_pause), ("resume", cmd_resume), ("delete", cmd_delete)):
        p = sub.add_parser(name, help=f"{name.capitalize()} a subscription")
        p.add_argument("subscription_id", type=int)
        p.set_defaults(func=func)

    p = sub.add_parser("history", help="Show monitoring history")
    p.add_argument("subscription_id", type=int)
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_history)

    return parser


def main():
    args = build_parser().parse_args()
    init_database()
    args.func(args)


if __name__ == "__main__":
    main()
