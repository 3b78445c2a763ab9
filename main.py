#!/usr/bin/env python3
"""
Gift Count Monitor - Main Entry Point

Runs the monitoring daemon that watches gift catalog counts and notifies
Telegram subscribers when they change. Same options as the gifts-monitor
console script.

Usage:
    python main.py
    python main.py --once
    python main.py --schedule every_15_minutes --no-headless
"""

import sys


def main():
    from services.monitoring_daemon import main as run_daemon

    print("🎁 Starting Gift Count Monitor...")
    return run_daemon()


if __name__ == "__main__":
    sys.exit(main())
