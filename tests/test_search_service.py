"""Tests for monitoring.search_service.ReliableSearchService."""
import asyncio

import pytest

from conftest import FakeScraper, FakeStore, make_result, make_subscription
from monitoring.errors import ExtractionError, ImplausibleResultError, UnconfirmedChangeError
from monitoring.schemas import SearchCriteria
from monitoring.search_service import ReliableSearchService

CRITERIA = SearchCriteria(item_name="Plush Pepe")


def make_service(reads, scraper_config, monitoring_config, store=None):
    scraper = FakeScraper(reads)
    store = store or FakeStore([make_subscription(1)])
    return ReliableSearchService(scraper, scraper_config, monitoring_config, store=store), scraper, store


def test_search_with_retry_recovers(scraper_config, monitoring_config):
    service, scraper, _ = make_service(
        [ExtractionError("NAVIGATION_TIMEOUT", "timeout"), ExtractionError("PAGE_NOT_READY", "blank"), 7],
        scraper_config, monitoring_config,
    )

    result = asyncio.run(service.search_with_retry(CRITERIA))

    assert result.count == 7
    assert len(scraper.calls) == 3


def test_search_with_retry_surfaces_last_error(scraper_config, monitoring_config):
    service, scraper, _ = make_service(
        [ExtractionError("A", "first"), ExtractionError("B", "second"), ExtractionError("C", "third")],
        scraper_config, monitoring_config,
    )

    with pytest.raises(ExtractionError) as excinfo:
        asyncio.run(service.search_with_retry(CRITERIA))

    assert excinfo.value.code == "C"
    assert excinfo.value.retry_count == 3
    assert len(scraper.calls) == 3


def test_zero_count_without_items_is_plausible(scraper_config, monitoring_config):
    service, _, _ = make_service([], scraper_config, monitoring_config)
    service.ensure_plausible(5, make_result(0, CRITERIA, items=0))


@pytest.mark.parametrize("previous,count,items", [
    (0, 0, 3),            # zero count with items
    (0, 4, 0),            # positive count without items
    (0, -1, 0),           # negative
    (0, 1_000_001, 3),    # above the upper bound
    (5, 500, 3),          # 100x jump
])
def test_implausible_reads_are_rejected(scraper_config, monitoring_config, previous, count, items):
    service, _, _ = make_service([], scraper_config, monitoring_config)

    with pytest.raises(ImplausibleResultError):
        service.ensure_plausible(previous, make_result(count, CRITERIA, items=items))


def test_jump_just_below_ratio_is_plausible(scraper_config, monitoring_config):
    service, _, _ = make_service([], scraper_config, monitoring_config)
    service.ensure_plausible(5, make_result(499, CRITERIA))


def test_confirmation_outside_tolerance(scraper_config, monitoring_config):
    service, _, _ = make_service([11], scraper_config, monitoring_config)

    with pytest.raises(UnconfirmedChangeError) as excinfo:
        asyncio.run(service.confirm_change(CRITERIA, 50))

    assert excinfo.value.first_count == 50
    assert excinfo.value.second_count == 11


def test_confirmation_within_tolerance(scraper_config, monitoring_config):
    service, _, _ = make_service([51], scraper_config, monitoring_config)
    assert asyncio.run(service.confirm_change(CRITERIA, 50)) == 51


def test_first_observation_is_recorded(scraper_config, monitoring_config):
    service, _, store = make_service([5, 5], scraper_config, monitoring_config)

    outcome = asyncio.run(service.check_subscription_change(make_subscription(1)))

    assert outcome.old_count == 0
    assert outcome.new_count == 5
    assert outcome.changed is True
    assert store.latest_history_for(1)['count'] == 5


def test_unchanged_read_is_recorded_without_confirmation(scraper_config, monitoring_config):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 10)
    service, scraper, _ = make_service([10], scraper_config, monitoring_config, store=store)

    outcome = asyncio.run(service.check_subscription_change(make_subscription(1)))

    assert outcome.changed is False
    assert outcome.rejected is None
    assert len(scraper.calls) == 1
    assert store.history[-1]['count'] == 10
    assert store.history[-1]['has_changed'] is False


def test_implausible_read_keeps_baseline(scraper_config, monitoring_config):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 5)
    service, _, _ = make_service([(0, 3)], scraper_config, monitoring_config, store=store)

    outcome = asyncio.run(service.check_subscription_change(make_subscription(1)))

    assert outcome.changed is False
    assert outcome.old_count == 5
    assert outcome.new_count == 5
    assert outcome.rejected
    assert len(store.history) == 1


def test_unconfirmed_change_is_not_persisted_until_stable(scraper_config, monitoring_config):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 10)
    # cycle 1: 10; cycle 2: 50 then 11 on confirmation; cycle 3: 11 confirmed by 11
    service, _, _ = make_service([10, 50, 11, 11, 11], scraper_config, monitoring_config, store=store)
    subscription = make_subscription(1)

    first = asyncio.run(service.check_subscription_change(subscription))
    second = asyncio.run(service.check_subscription_change(subscription))
    assert first.changed is False
    assert second.changed is False
    assert second.new_count == 10
    assert 50 not in [h['count'] for h in store.history]
    assert service.baseline_for(1) == 10

    third = asyncio.run(service.check_subscription_change(subscription))
    assert third.changed is True
    assert (third.old_count, third.new_count) == (10, 11)
    assert store.latest_history_for(1)['count'] == 11
    assert store.latest_history_for(1)['has_changed'] is True


def test_failed_confirmation_read_is_unconfirmed(scraper_config, monitoring_config):
    store = FakeStore([make_subscription(1)])
    store.seed(1, 5)
    errors = [ExtractionError("NAVIGATION_TIMEOUT", "timeout") for _ in range(3)]
    service, _, _ = make_service([9] + errors, scraper_config, monitoring_config, store=store)

    outcome = asyncio.run(service.check_subscription_change(make_subscription(1)))

    assert outcome.changed is False
    assert outcome.new_count == 5
    assert len(store.history) == 1


def test_extraction_failure_propagates(scraper_config, monitoring_config):
    errors = [ExtractionError("BROWSER_UNAVAILABLE", "no browser") for _ in range(3)]
    service, _, store = make_service(errors, scraper_config, monitoring_config)

    with pytest.raises(ExtractionError):
        asyncio.run(service.check_subscription_change(make_subscription(1)))

    assert store.history == []
