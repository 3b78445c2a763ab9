#!/usr/bin/env python3
"""
Database Initialization Script

Creates the SQLite schema (idempotent), optionally takes a backup and
prints a short summary of what is stored.

Usage:
    python scripts/init_database.py [--no-backup] [--prune-days N]
"""

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.database import (
    DB_PATH,
    init_database,
    backup_database,
    list_all_subscriptions,
    delete_old_history,
)
from config.models import Base


def main():
    parser = argparse.ArgumentParser(description="Create the gift monitor database")
    parser.add_argument("--no-backup", action="store_true", help="Skip the backup copy")
    parser.add_argument("--prune-days", type=int, help="Also drop history older than N days")
    args = parser.parse_args()

    print(f"🚀 Initializing Gift Monitor Database at {DB_PATH}")
    print("=" * 50)

    try:
        init_database()
        print("✅ Schema ready")

        if not args.no_backup:
            backup_path = backup_database()
            print(f"💾 Backup: {backup_path}" if backup_path else "⚠️  No backup created")

        if args.prune_days:
            removed = delete_old_history(args.prune_days)
            print(f"🧹 Removed {removed} history rows older than {args.prune_days} days")

        print(f"\n📊 Tables: {', '.join(sorted(Base.metadata.tables))}")

        subscriptions = list_all_subscriptions()
        active = sum(1 for s in subscriptions if s['is_active'])
        print(f"🎁 Subscriptions: {len(subscriptions)} ({active} active)")

    except Exception as e:
        print(f"❌ Error initializing database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
