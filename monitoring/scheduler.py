"""
Monitoring Scheduler

Runs a monitoring cycle on a cron schedule: checks every active
subscription one after another, notifies owners of confirmed changes and
keeps running statistics that are pushed to registered status messages.
A failing subscription or notification never aborts the cycle.
"""

import asyncio
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import database
from config.settings import resolve_schedule
from monitoring.errors import NotificationDispatchError, SubscriptionCheckError
from monitoring.notifications import format_change_notification, format_monitoring_stats
from monitoring.schemas import CycleReport, MonitoringStats

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "monitoring-cycle"


class _StatsState:
    """Mutable counters behind MonitoringStats; written only by the scheduler."""

    def __init__(self):
        self.total_checks = 0
        self.successful_checks = 0
        self.failed_checks = 0
        self.total_changes = 0
        self.notifications_sent = 0
        self.notifications_failed = 0
        self.last_check = None
        self.is_running = False

    def snapshot(self):
        return MonitoringStats(
            total_checks=self.total_checks,
            successful_checks=self.successful_checks,
            failed_checks=self.failed_checks,
            total_changes=self.total_changes,
            notifications_sent=self.notifications_sent,
            notifications_failed=self.notifications_failed,
            last_check=self.last_check,
            is_running=self.is_running,
        )


class MonitoringScheduler:
    """
    Args:
        search_service (ReliableSearchService): Change detection per subscription
        messenger: Object exposing async send_message(user_id, text) and
            edit_message(user_id, message_id, text)
        config (MonitoringConfig): Schedule, delays and display settings
        store: Subscription storage (defaults to config.database)
    """

    def __init__(self, search_service, messenger, config, store=database):
        self.search_service = search_service
        self.messenger = messenger
        self.config = config
        self.store = store
        self.schedule = resolve_schedule(config.schedule)

        self._stats = _StatsState()
        self._scheduler = None
        self._cycle_in_progress = False
        self._cycle_task = None
        self._stats_displays = {}  # user_id -> message_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self):
        return self._scheduler is not None

    def start(self):
        """
        Start the recurring timer. Must be called from a running event loop.
        """
        if self._scheduler is not None:
            logger.warning("Monitoring already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._on_tick,
            CronTrigger.from_crontab(self.schedule),
            id=CYCLE_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._stats.is_running = True
        logger.info(f"Monitoring started with schedule: {self.schedule}")

    def stop(self):
        """
        Stop the timer. A cycle already in flight runs to completion.
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._stats.is_running = False
            logger.info("Monitoring stopped")

        self._stats_displays.clear()

    async def wait_for_cycle(self):
        """
        Wait for the last tick-launched cycle.

        Returns:
            CycleReport or None: Its report, None if no cycle was launched
        """
        if self._cycle_task is None:
            return None
        if not self._cycle_task.done():
            logger.info("Waiting for the running monitoring cycle to finish...")
        return await self._cycle_task

    def update_schedule(self, expression):
        """
        Change the schedule; a running timer is rescheduled immediately.

        Args:
            expression (str): Cron expression or named frequency

        Raises:
            ValueError: If the expression is invalid
        """
        schedule = resolve_schedule(expression)
        self.schedule = schedule
        self.config.schedule = schedule

        if self._scheduler is not None:
            self._scheduler.reschedule_job(CYCLE_JOB_ID, trigger=CronTrigger.from_crontab(schedule))
        logger.info(f"Monitoring schedule updated: {schedule}")

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self):
        return self._stats.snapshot()

    def register_stats_display(self, user_id, message_id):
        self._stats_displays[user_id] = message_id

    def unregister_stats_display(self, user_id):
        self._stats_displays.pop(user_id, None)

    async def _push_stats_displays(self):
        if not self._stats_displays:
            return

        try:
            text = format_monitoring_stats(self.get_stats(), self.config.display_timezone)
        except Exception as e:
            logger.error(f"Could not format monitoring stats: {e}", exc_info=True)
            return

        for user_id, message_id in list(self._stats_displays.items()):
            try:
                await self.messenger.edit_message(user_id, message_id, text)
            except Exception as e:
                logger.info(f"Could not update stats message for user {user_id}, dropping it: {e}")
                self._stats_displays.pop(user_id, None)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _on_tick(self):
        # The cycle runs as its own task so shutting the timer down never cancels it
        pending = self._cycle_task is not None and not self._cycle_task.done()
        if self._cycle_in_progress or pending:
            logger.warning("Previous monitoring cycle still running, skipping this tick")
            return
        self._cycle_task = asyncio.ensure_future(self.run_cycle())

    async def run_one_cycle_now(self):
        return await self.run_cycle()

    async def run_cycle(self):
        """
        Run one monitoring cycle.

        Returns:
            CycleReport or None: None if another cycle was already in progress
        """
        if self._cycle_in_progress:
            logger.warning("Monitoring cycle already in progress, not starting another")
            return None

        self._cycle_in_progress = True
        report = CycleReport(started_at=datetime.now())
        self._stats.total_checks += 1
        self._stats.last_check = report.started_at
        logger.info(f"=== Monitoring cycle #{self._stats.total_checks} ===")

        try:
            self._sweep_history()

            subscriptions = self.store.list_active_subscriptions()
            report.total_subscriptions = len(subscriptions)

            if subscriptions:
                logger.info(f"Checking {len(subscriptions)} active subscriptions")
                await self._check_subscriptions(subscriptions, report)
                await self._send_change_notifications(report)
            else:
                logger.info("No active subscriptions to check.")

            report.succeeded = True
            self._stats.successful_checks += 1
        except Exception as e:
            self._stats.failed_checks += 1
            report.errors.append(f"cycle: {e}")
            logger.error(f"Error in monitoring cycle: {e}", exc_info=True)
        finally:
            report.finished_at = datetime.now()
            self._cycle_in_progress = False

        logger.info(
            f"Cycle finished in {report.duration_seconds:.1f}s: "
            f"{len(report.changed)} changed of {report.total_subscriptions}, "
            f"{len(report.errors)} errors"
        )
        await self._push_stats_displays()
        return report

    def _sweep_history(self):
        days = self.config.history_retention_days
        if days <= 0:
            return
        try:
            self.store.delete_old_history(days)
        except Exception as e:
            logger.warning(f"History retention sweep failed: {e}")

    async def _check_one(self, subscription):
        try:
            return await self.search_service.check_subscription_change(subscription)
        except Exception as e:
            raise SubscriptionCheckError(subscription['subscription_id'], str(e)) from e

    async def _check_subscriptions(self, subscriptions, report):
        delay = self.config.subscription_delay_ms / 1000

        for index, subscription in enumerate(subscriptions):
            subscription_id = subscription['subscription_id']
            logger.info(f"Checking subscription {subscription_id}: {subscription['item_name']}")

            try:
                outcome = await self._check_one(subscription)
            except SubscriptionCheckError as e:
                report.errors.append(f"subscription {e.subscription_id}: {e}")
                logger.error(f"Error checking subscription {e.subscription_id}: {e}")
            else:
                report.outcomes.append(outcome)
                if outcome.changed:
                    self._stats.total_changes += 1
                    logger.info(
                        f"Change detected: {subscription['item_name']} "
                        f"{outcome.old_count} -> {outcome.new_count}"
                    )

            if index < len(subscriptions) - 1 and delay > 0:
                await asyncio.sleep(delay)

    async def _send_change_notifications(self, report):
        changed = report.changed
        if not changed:
            logger.info("No changes detected")
            return

        logger.info(f"Sending {len(changed)} change notifications")
        delay = self.config.notification_delay_ms / 1000

        for outcome in changed:
            subscription = outcome.subscription
            try:
                await self._send_change_notification(outcome)
                report.notifications_sent += 1
                self._stats.notifications_sent += 1
            except NotificationDispatchError as e:
                if e.conflict:
                    logger.warning(
                        f"Skipped notification for subscription {subscription['subscription_id']}: "
                        f"another bot instance is polling"
                    )
                    continue
                report.notifications_failed += 1
                self._stats.notifications_failed += 1
                report.errors.append(f"notification {subscription['subscription_id']}: {e}")
                logger.error(f"Failed to notify user {subscription['user_id']}: {e}")
            except Exception as e:
                report.notifications_failed += 1
                self._stats.notifications_failed += 1
                report.errors.append(f"notification {subscription['subscription_id']}: {e}")
                logger.error(f"Failed to notify user {subscription['user_id']}: {e}", exc_info=True)

            if delay > 0:
                await asyncio.sleep(delay)

        logger.info(
            f"Notifications: {report.notifications_sent} sent, {report.notifications_failed} failed"
        )

    async def _send_change_notification(self, outcome):
        subscription = outcome.subscription

        item_link = None
        try:
            item_link = await self.search_service.latest_item_link(subscription)
        except Exception as e:
            logger.warning(f"Could not get latest item link for subscription {subscription['subscription_id']}: {e}")

        text = format_change_notification(
            subscription,
            outcome.old_count,
            outcome.new_count,
            item_link=item_link,
            results_url=self.config.results_url,
        )
        await self.messenger.send_message(subscription['user_id'], text)
        logger.info(f"Notification sent to user {subscription['user_id']} for {subscription['item_name']}")
