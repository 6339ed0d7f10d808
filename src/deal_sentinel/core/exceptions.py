"""Custom exception hierarchy for deal-sentinel."""

from typing import Any


class DealSentinelError(Exception):
    """Base exception for all deal-sentinel errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(DealSentinelError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the invalid value
    """


class FetchFailedError(DealSentinelError):
    """Failed to fetch a price observation from the storefront.

    Policy: never escapes a sweep. The fetcher converts it into a typed
    FetchError value and the item is recorded as fetch_failed.

    Context keys:
        external_id (str): the storefront id being fetched
        url (str): the URL that was being fetched
    """


class RateLimitError(FetchFailedError):
    """Storefront rate limit exceeded (HTTP 429).

    Policy: backoff and retry (handled by the fetcher internally).

    Context keys:
        retry_after (int | None): seconds to wait
    """


class StorageError(DealSentinelError):
    """Database operation failed.

    Policy: raise to the caller. Inside a sweep the runner counts the item
    as failed and moves on to the next one.

    Context keys:
        operation (str): "insert", "query", "migrate", etc.
        table (str): the table involved
    """


class NotificationError(DealSentinelError):
    """Notification delivery failed.

    Policy: log and drop. Never propagated into a sweep.

    Context keys:
        channel (str): "discord", etc.
        status_code (int | None): HTTP status code if applicable
    """


class SweepError(DealSentinelError):
    """A blocking sweep could not start.

    Raised only by BatchRunner.run_sweep() when another sweep is active.
    start_sweep() never raises for that case; it returns a rejected
    StartResult instead.

    Policy: surface to the caller as a 409 / CLI error.

    Context keys:
        run_id (str | None): the sweep that is already running
    """
