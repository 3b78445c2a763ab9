"""Tests for monitoring.scheduler.MonitoringScheduler."""
import asyncio

import pytest

from conftest import FakeScraper, FakeStore, make_subscription
from monitoring.errors import ExtractionError, NotificationDispatchError
from monitoring.scheduler import CYCLE_JOB_ID, MonitoringScheduler
from monitoring.search_service import ReliableSearchService


def make_scheduler(scraper, store, messenger, scraper_config, monitoring_config):
    service = ReliableSearchService(scraper, scraper_config, monitoring_config, store=store)
    return MonitoringScheduler(service, messenger, monitoring_config, store=store)


class SlowScraper(FakeScraper):
    """Blocks every search until `release` is set; build it inside the running loop."""

    def __init__(self, reads):
        super().__init__(reads)
        self.release = asyncio.Event()

    async def search(self, criteria):
        await self.release.wait()
        return await super().search(criteria)


def test_confirmed_change_is_recorded_and_notified(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1, user_id=1000)])
    store.seed(1, 5)
    scheduler = make_scheduler(FakeScraper([9, 9]), store, messenger, scraper_config, monitoring_config)

    report = asyncio.run(scheduler.run_cycle())

    assert report.succeeded is True
    assert [(o.old_count, o.new_count) for o in report.changed] == [(5, 9)]
    assert store.history[-1]['count'] == 9
    assert store.history[-1]['has_changed'] is True

    assert len(messenger.sent) == 1
    user_id, text = messenger.sent[0]
    assert user_id == 1000
    assert "<b>5</b> → <b>9</b>" in text
    assert "https://t.me/nft/PlushPepe-1" in text

    stats = scheduler.get_stats()
    assert stats.total_checks == 1
    assert stats.successful_checks == 1
    assert stats.total_changes == 1
    assert stats.notifications_sent == 1


def test_implausible_jump_is_ignored(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 5)
    scraper = FakeScraper([500, 5])
    scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)

    report = asyncio.run(scheduler.run_cycle())

    assert report.changed == []
    assert report.outcomes[0].rejected
    assert len(store.history) == 1
    assert messenger.sent == []

    # next cycle still compares against 5
    report = asyncio.run(scheduler.run_cycle())
    assert report.outcomes[0].old_count == 5
    assert report.outcomes[0].changed is False


def test_failing_subscription_does_not_stop_the_cycle(scraper_config, monitoring_config, messenger):
    subscriptions = [
        make_subscription(1, user_id=1, item_name="Plush Pepe"),
        make_subscription(2, user_id=2, item_name="Durov's Cap"),
        make_subscription(3, user_id=3, item_name="Signet Ring"),
    ]
    store = FakeStore(subscriptions)
    store.seed(1, 4)
    store.seed(3, 2)
    scraper = FakeScraper({
        "Plush Pepe": [4],
        "Durov's Cap": [ExtractionError("SEARCH_BUTTON_NOT_FOUND", "no button") for _ in range(3)],
        "Signet Ring": [3, 3],
    })
    scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)

    report = asyncio.run(scheduler.run_cycle())

    assert [o.subscription['subscription_id'] for o in report.outcomes] == [1, 3]
    assert len(report.errors) == 1
    assert "subscription 2" in report.errors[0]
    assert report.succeeded is True
    assert [user_id for user_id, _ in messenger.sent] == [3]

    stats = scheduler.get_stats()
    assert stats.successful_checks == 1
    assert stats.failed_checks == 0


def test_loading_subscriptions_failure_fails_the_cycle(scraper_config, monitoring_config, messenger):
    store = FakeStore()
    store.list_error = RuntimeError("database is locked")
    scheduler = make_scheduler(FakeScraper(), store, messenger, scraper_config, monitoring_config)

    report = asyncio.run(scheduler.run_cycle())

    assert report.succeeded is False
    stats = scheduler.get_stats()
    assert stats.total_checks == 1
    assert stats.failed_checks == 1
    assert stats.successful_checks == 0


def test_get_stats_is_idempotent(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1)])
    scheduler = make_scheduler(FakeScraper([0]), store, messenger, scraper_config, monitoring_config)

    assert scheduler.get_stats() == scheduler.get_stats()

    asyncio.run(scheduler.run_cycle())

    first = scheduler.get_stats()
    second = scheduler.get_stats()
    assert first == second
    assert first.last_check is not None


def test_conflict_is_skipped_and_other_failures_counted(scraper_config, monitoring_config, messenger):
    subscriptions = [
        make_subscription(1, user_id=1, item_name="Plush Pepe"),
        make_subscription(2, user_id=2, item_name="Durov's Cap"),
        make_subscription(3, user_id=3, item_name="Signet Ring"),
    ]
    store = FakeStore(subscriptions)
    for sid in (1, 2, 3):
        store.seed(sid, 5)
    scraper = FakeScraper({
        "Plush Pepe": [6, 6],
        "Durov's Cap": [7, 7],
        "Signet Ring": [8, 8],
    })
    messenger.send_errors[1] = NotificationDispatchError("Conflict: terminated by other getUpdates request", conflict=True, error_code=409)
    messenger.send_errors[2] = NotificationDispatchError("Forbidden: bot was blocked by the user", error_code=403)
    scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)

    report = asyncio.run(scheduler.run_cycle())

    assert len(report.changed) == 3
    assert [user_id for user_id, _ in messenger.sent] == [3]
    assert report.notifications_sent == 1
    assert report.notifications_failed == 1
    assert report.succeeded is True

    stats = scheduler.get_stats()
    assert stats.notifications_sent == 1
    assert stats.notifications_failed == 1


def test_missing_item_link_still_notifies(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1, user_id=7)])
    store.seed(1, 5)
    scraper = FakeScraper([9, 9], item_link=ExtractionError("ITEM_NOT_FOUND", "no cards"))
    scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)

    asyncio.run(scheduler.run_cycle())

    assert len(messenger.sent) == 1
    assert "Latest listed gift" not in messenger.sent[0][1]
    assert "All matching gifts" in messenger.sent[0][1]


def test_stats_displays_are_updated_and_dropped_on_failure(scraper_config, monitoring_config, messenger):
    scheduler = make_scheduler(FakeScraper(), FakeStore(), messenger, scraper_config, monitoring_config)
    scheduler.register_stats_display(1000, 11)
    scheduler.register_stats_display(2000, 22)
    messenger.edit_failures.add(2000)

    asyncio.run(scheduler.run_cycle())
    asyncio.run(scheduler.run_cycle())

    assert [(user_id, message_id) for user_id, message_id, _ in messenger.edits] == [(1000, 11), (1000, 11)]
    assert "Total checks:</b> 2" in messenger.edits[-1][2]

    scheduler.unregister_stats_display(1000)
    asyncio.run(scheduler.run_cycle())
    assert len(messenger.edits) == 2


def test_retention_sweep_runs_before_checks(scraper_config, monitoring_config, messenger):
    monitoring_config.history_retention_days = 30
    store = FakeStore()
    scheduler = make_scheduler(FakeScraper(), store, messenger, scraper_config, monitoring_config)

    asyncio.run(scheduler.run_cycle())

    assert store.swept == [30]


def test_overlapping_cycle_is_skipped(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 3)

    async def scenario():
        scraper = SlowScraper([3])
        scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)
        first = asyncio.ensure_future(scheduler.run_cycle())
        await asyncio.sleep(0)

        skipped = await scheduler.run_cycle()

        scraper.release.set()
        report = await first
        return scheduler, skipped, report

    scheduler, skipped, report = asyncio.run(scenario())

    assert skipped is None
    assert report.succeeded is True
    assert scheduler.get_stats().total_checks == 1


def test_stop_lets_tick_launched_cycle_finish(scraper_config, monitoring_config, messenger):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 3)

    async def scenario():
        scraper = SlowScraper([3])
        scheduler = make_scheduler(scraper, store, messenger, scraper_config, monitoring_config)
        scheduler.start()

        await scheduler._on_tick()
        first_task = scheduler._cycle_task
        await asyncio.sleep(0)

        # a tick while the cycle is blocked in the browser starts nothing new
        await scheduler._on_tick()
        assert scheduler._cycle_task is first_task

        scheduler.stop()
        assert not first_task.done()

        scraper.release.set()
        report = await scheduler.wait_for_cycle()
        return scheduler, scraper, report

    scheduler, scraper, report = asyncio.run(scenario())

    assert report is not None
    assert report.succeeded is True
    assert report.total_subscriptions == 1
    assert len(scraper.calls) == 1
    assert len(store.history) == 2
    assert store.history[-1]['count'] == 3

    stats = scheduler.get_stats()
    assert stats.total_checks == 1
    assert stats.successful_checks == 1
    assert stats.is_running is False


def test_wait_for_cycle_without_tick(scraper_config, monitoring_config, messenger):
    scheduler = make_scheduler(FakeScraper(), FakeStore(), messenger, scraper_config, monitoring_config)
    assert asyncio.run(scheduler.wait_for_cycle()) is None


def test_start_stop_and_reschedule(scraper_config, monitoring_config, messenger):
    scheduler = make_scheduler(FakeScraper(), FakeStore(), messenger, scraper_config, monitoring_config)
    scheduler.register_stats_display(1000, 11)

    async def scenario():
        scheduler.start()
        running = scheduler.get_stats().is_running
        scheduler.update_schedule("every_5_minutes")
        trigger = str(scheduler._scheduler.get_job(CYCLE_JOB_ID).trigger)
        scheduler.stop()
        return running, trigger

    running, trigger = asyncio.run(scenario())

    assert running is True
    assert "*/5" in trigger
    assert scheduler.schedule == "*/5 * * * *"
    assert scheduler.get_stats().is_running is False
    assert scheduler.is_running is False

    # displays are cleared on stop
    asyncio.run(scheduler.run_cycle())
    assert messenger.edits == []


def test_update_schedule_rejects_invalid_expression(scraper_config, monitoring_config, messenger):
    scheduler = make_scheduler(FakeScraper(), FakeStore(), messenger, scraper_config, monitoring_config)

    with pytest.raises(ValueError):
        scheduler.update_schedule("every other tuesday")

    assert scheduler.schedule == monitoring_config.schedule


def test_bad_display_timezone_does_not_break_the_cycle(scraper_config, monitoring_config, messenger):
    monitoring_config.display_timezone = "Mars/Olympus_Mons"
    scheduler = make_scheduler(FakeScraper(), FakeStore(), messenger, scraper_config, monitoring_config)
    scheduler.register_stats_display(1000, 11)

    report = asyncio.run(scheduler.run_cycle())

    assert report.succeeded is True
    assert messenger.edits == []
    assert scheduler.get_stats().successful_checks == 1
