"""
Search and monitoring data types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class SearchCriteria:
    item_name: str
    model: Optional[str] = None
    background: Optional[str] = None
    pattern: Optional[str] = None

    @classmethod
    def from_subscription(cls, subscription: dict) -> "SearchCriteria":
        return cls(
            item_name=subscription["item_name"],
            model=subscription.get("model") or None,
            background=subscription.get("background") or None,
            pattern=subscription.get("pattern") or None,
        )

    def describe(self) -> str:
        extras = [v for v in (self.model, self.background, self.pattern) if v]
        return f"{self.item_name} ({', '.join(extras)})" if extras else self.item_name


@dataclass
class CatalogItem:
    id: str
    name: str
    image_url: Optional[str] = None
    rarity: Optional[str] = None


@dataclass
class SearchResult:
    count: int
    items: List[CatalogItem]
    criteria: SearchCriteria
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ScraperStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    last_request_time: Optional[datetime] = None


@dataclass
class ChangeOutcome:
    """Result of checking one subscription against its baseline."""

    subscription: dict
    changed: bool
    old_count: int
    new_count: int
    result: Optional[SearchResult] = None
    rejected: Optional[str] = None


@dataclass(frozen=True)
class MonitoringStats:
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    total_changes: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    last_check: Optional[datetime] = None
    is_running: bool = False


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_subscriptions: int = 0
    outcomes: List[ChangeOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    notifications_sent: int = 0
    notifications_failed: int = 0
    succeeded: bool = False

    @property
    def changed(self) -> List[ChangeOutcome]:
        return [o for o in self.outcomes if o.changed]

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
