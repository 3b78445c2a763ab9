"""
Monitoring Daemon

Background service that checks every active gift subscription on a cron
schedule and notifies subscribers through Telegram when counts change.
"""

import os
import sys
import signal
import asyncio
import logging
import argparse
from pathlib import Path

from dotenv import load_dotenv

# Load env vars
load_dotenv()

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.database import init_database
from config.settings import ScraperConfig, MonitoringConfig, TelegramConfig, resolve_schedule
from monitoring.catalog_scraper import CatalogScraper
from monitoring.search_service import ReliableSearchService
from monitoring.scheduler import MonitoringScheduler
from services.telegram_messenger import TelegramMessenger

logger = logging.getLogger(__name__)


def configure_logging():
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(os.getenv("LOG_FILE", "gifts_monitor.log")),
            logging.StreamHandler(),
        ],
    )
    # Selenium and urllib3 are chatty at INFO
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_components(schedule=None, headless=None):
    """
    Wire scraper, search service, messenger and scheduler from the environment.

    Returns:
        tuple: (scraper, messenger, scheduler)
    """
    scraper_config = ScraperConfig.from_env()
    if headless is not None:
        scraper_config.headless = headless

    monitoring_config = MonitoringConfig.from_env()
    if schedule:
        monitoring_config.schedule = schedule

    scraper = CatalogScraper(scraper_config)
    search_service = ReliableSearchService(scraper, scraper_config, monitoring_config)
    messenger = TelegramMessenger(TelegramConfig.from_env())
    scheduler = MonitoringScheduler(search_service, messenger, monitoring_config)
    return scraper, messenger, scheduler


def print_report(report):
    if report is None:
        print("⚠️  A monitoring cycle was already running")
        return

    status = "✅" if report.succeeded else "❌"
    print(f"{status} Cycle finished in {report.duration_seconds:.1f}s")
    print(f"   Subscriptions checked: {report.total_subscriptions}")
    print(f"   Changes confirmed: {len(report.changed)}")
    for outcome in report.changed:
        print(f"     - #{outcome.subscription['subscription_id']} "
              f"{outcome.subscription['item_name']}: {outcome.old_count} -> {outcome.new_count}")
    print(f"   Notifications: {report.notifications_sent} sent, {report.notifications_failed} failed")
    for error in report.errors:
        print(f"   ⚠️  {error}")


async def _wait_for_shutdown():
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal. Stopping gracefully...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await stop_event.wait()


async def run(once=False, schedule=None, headless=None):
    """
    Run the daemon until SIGINT/SIGTERM, or a single cycle when once=True.

    Returns:
        int: Process exit code
    """
    init_database()

    scraper, messenger, scheduler = build_components(schedule=schedule, headless=headless)

    try:
        await scraper.start()

        if once:
            report = await scheduler.run_one_cycle_now()
            print_report(report)
            return 0 if report is not None and report.succeeded else 1

        if not scheduler.config.enabled:
            logger.warning("Monitoring is disabled (MONITORING_ENABLED=false); nothing to do")
            return 0

        scheduler.start()
        logger.info("Press Ctrl+C to stop")
        await _wait_for_shutdown()

        scheduler.stop()
        await scheduler.wait_for_cycle()
        return 0
    finally:
        await scraper.close()
        messenger.close()
        logger.info("Monitoring Daemon stopped")


def build_parser():
    parser = argparse.ArgumentParser(description="Gift Count Monitor")
    parser.add_argument("--once", action="store_true", help="Run a single monitoring cycle and exit")
    parser.add_argument("--schedule", help="Cron expression or frequency name (e.g. every_hour)")
    parser.add_argument("--no-headless", action="store_true", help="Show the browser window")
    return parser


def parse_args(argv=None):
    """
    Parse command line options; --schedule is resolved to a cron expression.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.schedule:
        try:
            args.schedule = resolve_schedule(args.schedule)
        except ValueError as e:
            parser.error(str(e))
    return args


def main(argv=None):
    args = parse_args(argv)

    configure_logging()
    logger.info("Starting Monitoring Daemon")
    if args.schedule:
        logger.info(f"Schedule override: {args.schedule}")

    try:
        return asyncio.run(run(
            once=args.once,
            schedule=args.schedule,
            headless=False if args.no_headless else None,
        ))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Monitoring Daemon failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
