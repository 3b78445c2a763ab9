"""
Monitoring Errors
"""

from datetime import datetime


class MonitoringError(Exception):
    """Base class for monitoring pipeline errors."""


class ExtractionError(MonitoringError):
    """A catalog search step failed inside the browser."""

    def __init__(self, code, message, timestamp=None, retry_count=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.timestamp = timestamp or datetime.now()
        self.retry_count = retry_count

    def __str__(self):
        return f"[{self.code}] {self.message}"


class ImplausibleResultError(MonitoringError):
    """A single read is internally inconsistent or implausibly large."""


class UnconfirmedChangeError(MonitoringError):
    """A detected change was not reproduced by the confirmation read."""

    def __init__(self, message, first_count, second_count=None):
        super().__init__(message)
        self.first_count = first_count
        self.second_count = second_count


class NotificationDispatchError(MonitoringError):
    """Sending or editing a user message failed."""

    def __init__(self, message, conflict=False, error_code=None):
        super().__init__(message)
        self.conflict = conflict
        self.error_code = error_code


class SubscriptionCheckError(MonitoringError):
    """Checking one subscription failed; the cycle carries on."""

    def __init__(self, subscription_id, message):
        super().__init__(message)
        self.subscription_id = subscription_id
