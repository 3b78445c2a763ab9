"""Shared test fixtures and fakes."""
from datetime import datetime

import pytest

from config import database
from config.settings import MonitoringConfig, ScraperConfig
from monitoring.errors import ExtractionError, NotificationDispatchError
from monitoring.schemas import CatalogItem, SearchResult


def make_result(count, criteria, items=None):
    """SearchResult with `items` summaries (default: up to 3 when count > 0)."""
    if items is None:
        items = min(count, 3) if count > 0 else 0
    return SearchResult(
        count=count,
        items=[CatalogItem(id=f"gift-{i}", name=f"Gift #{i}") for i in range(items)],
        criteria=criteria,
    )


def make_subscription(subscription_id, user_id=1000, item_name="Plush Pepe", **filters):
    return {
        'subscription_id': subscription_id,
        'user_id': user_id,
        'item_name': item_name,
        'model': filters.get('model'),
        'background': filters.get('background'),
        'pattern': filters.get('pattern'),
        'is_active': filters.get('is_active', True),
        'created_at': datetime(2026, 1, 1),
        'updated_at': datetime(2026, 1, 1),
    }


class FakeScraper:
    """
    Scripted scraper. `reads` is a list used for every item, or a dict of
    item_name -> list. Entries are counts, (count, items) tuples or exceptions.
    """

    def __init__(self, reads=None, item_link="https://t.me/nft/PlushPepe-1"):
        self.reads = reads if isinstance(reads, dict) else {None: list(reads or [])}
        self.item_link = item_link
        self.calls = []

    def _queue(self, criteria):
        if criteria.item_name in self.reads:
            return self.reads[criteria.item_name]
        return self.reads.get(None, [])

    async def search(self, criteria):
        self.calls.append(criteria)
        queue = self._queue(criteria)
        if not queue:
            raise ExtractionError("NO_MORE_READS", f"no read scripted for {criteria.item_name}")

        read = queue.pop(0)
        if isinstance(read, Exception):
            raise read
        if isinstance(read, tuple):
            return make_result(read[0], criteria, items=read[1])
        return make_result(read, criteria)

    async def latest_item_link(self, criteria):
        if isinstance(self.item_link, Exception):
            raise self.item_link
        return self.item_link


class FakeStore:
    """In-memory stand-in for config.database."""

    def __init__(self, subscriptions=()):
        self.subscriptions = list(subscriptions)
        self.history = []
        self.swept = []
        self.list_error = None

    def seed(self, subscription_id, count):
        self.append_history(subscription_id, count, False)

    def list_active_subscriptions(self):
        if self.list_error:
            raise self.list_error
        return [s for s in self.subscriptions if s['is_active']]

    def latest_history_for(self, subscription_id):
        rows = [h for h in self.history if h['subscription_id'] == subscription_id]
        return rows[-1] if rows else None

    def append_history(self, subscription_id, count, changed):
        row = {
            'history_id': len(self.history) + 1,
            'subscription_id': subscription_id,
            'count': count,
            'checked_at': datetime.now(),
            'has_changed': bool(changed),
        }
        self.history.append(row)
        return row

    def delete_old_history(self, days_to_keep=30):
        self.swept.append(days_to_keep)
        return 0


class FakeMessenger:
    """Records messages; `send_errors` maps user_id -> exception to raise."""

    def __init__(self):
        self.sent = []
        self.edits = []
        self.send_errors = {}
        self.edit_failures = set()

    async def send_message(self, user_id, text):
        if user_id in self.send_errors:
            raise self.send_errors[user_id]
        self.sent.append((user_id, text))

    async def edit_message(self, user_id, message_id, text):
        if user_id in self.edit_failures:
            raise NotificationDispatchError("Bad Request: message to edit not found", error_code=400)
        self.edits.append((user_id, message_id, text))


@pytest.fixture
def scraper_config():
    return ScraperConfig(retry_attempts=3, retry_delay_ms=0)


@pytest.fixture
def monitoring_config():
    return MonitoringConfig(
        subscription_delay_ms=0,
        notification_delay_ms=0,
        confirmation_delay_ms=0,
        history_retention_days=0,
    )


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database file bound to config.database for one test."""
    engine = database.configure_database(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_database()
    yield database
    engine.dispose()
    database.engine = None
