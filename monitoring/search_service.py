"""
Reliable Search Service

Wraps the catalog scraper with retries and decides whether an observed
count difference is a real change. A new count is only accepted when the
read is plausible, and a change is only accepted when a second, delayed
read reproduces it. Accepted reads are appended to the monitoring history,
which holds the baseline for the next comparison.
"""

import asyncio
import logging

from config import database
from monitoring.errors import ExtractionError, ImplausibleResultError, UnconfirmedChangeError
from monitoring.schemas import ChangeOutcome, SearchCriteria

logger = logging.getLogger(__name__)


def criteria_for(subscription):
    return SearchCriteria.from_subscription(subscription)


class ReliableSearchService:
    """
    Args:
        scraper: Object exposing async search(criteria) and latest_item_link(criteria)
        scraper_config (ScraperConfig): Retry attempts and delay
        monitoring_config (MonitoringConfig): Plausibility and confirmation thresholds
        store: History storage (defaults to config.database)
    """

    def __init__(self, scraper, scraper_config, monitoring_config, store=database):
        self.scraper = scraper
        self.retry_attempts = max(1, scraper_config.retry_attempts)
        self.retry_delay = scraper_config.retry_delay_ms / 1000
        self.monitoring_config = monitoring_config
        self.store = store

    async def search_with_retry(self, criteria):
        """
        Search, retrying failed attempts after a fixed delay.

        Raises:
            ExtractionError: The last error once every attempt has failed
        """
        last_error = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self.scraper.search(criteria)
            except ExtractionError as e:
                last_error = e
                e.retry_count = attempt
                logger.warning(f"Search attempt {attempt}/{self.retry_attempts} failed: {e}")

            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_delay)

        raise last_error

    async def latest_item_link(self, subscription):
        return await self.scraper.latest_item_link(criteria_for(subscription))

    def baseline_for(self, subscription_id):
        latest = self.store.latest_history_for(subscription_id)
        return latest['count'] if latest else 0

    def ensure_plausible(self, previous_count, result):
        """
        Reject reads that are internally inconsistent or implausibly large.

        Raises:
            ImplausibleResultError: With the reason the read was rejected
        """
        count = result.count
        items = len(result.items)
        config = self.monitoring_config

        if count == 0 and items > 0:
            raise ImplausibleResultError(f"count is 0 but {items} items were extracted")
        if count > 0 and items == 0:
            raise ImplausibleResultError(f"count is {count} but no items were extracted")
        if count < 0 or count > config.max_plausible_count:
            raise ImplausibleResultError(f"count {count} is outside 0..{config.max_plausible_count}")
        if previous_count > 0 and count >= previous_count * config.jump_ratio:
            raise ImplausibleResultError(
                f"jump from {previous_count} to {count} is at least {config.jump_ratio}x"
            )

    async def confirm_change(self, criteria, first_count):
        """
        Repeat the search after a short delay and require the same count
        within the configured tolerance.

        Raises:
            UnconfirmedChangeError: If the reads disagree or the second read fails
        """
        await asyncio.sleep(self.monitoring_config.confirmation_delay_ms / 1000)

        try:
            second = await self.search_with_retry(criteria)
        except ExtractionError as e:
            raise UnconfirmedChangeError(f"confirmation read failed: {e}", first_count) from e

        if abs(second.count - first_count) > self.monitoring_config.confirmation_tolerance:
            raise UnconfirmedChangeError(
                f"confirmation read {second.count} differs from {first_count}",
                first_count,
                second.count,
            )
        return second.count

    async def check_subscription_change(self, subscription):
        """
        Compare a fresh read against the subscription's baseline.

        Returns:
            ChangeOutcome: changed=True only for a plausible, confirmed change.
            Rejected reads keep the old baseline and write no history.

        Raises:
            ExtractionError: If every search attempt failed
        """
        subscription_id = subscription['subscription_id']
        criteria = criteria_for(subscription)

        old_count = self.baseline_for(subscription_id)
        result = await self.search_with_retry(criteria)
        new_count = result.count

        try:
            self.ensure_plausible(old_count, result)
            changed = new_count != old_count
            if changed:
                await self.confirm_change(criteria, new_count)
        except (ImplausibleResultError, UnconfirmedChangeError) as e:
            logger.warning(f"Subscription {subscription_id}: read discarded ({e}), baseline stays {old_count}")
            return ChangeOutcome(
                subscription=subscription,
                changed=False,
                old_count=old_count,
                new_count=old_count,
                result=result,
                rejected=str(e),
            )

        self.store.append_history(subscription_id, new_count, changed)

        if changed:
            logger.info(f"Subscription {subscription_id}: count changed {old_count} -> {new_count}")
        else:
            logger.debug(f"Subscription {subscription_id}: count unchanged at {new_count}")

        return ChangeOutcome(
            subscription=subscription,
            changed=changed,
            old_count=old_count,
            new_count=new_count,
            result=result,
        )
