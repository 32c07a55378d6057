"""Events emitted by a QueryWatcher."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from querynotify.notification import NotificationReason, NotificationSource


@dataclass(frozen=True)
class ChangeEvent:
    """The result set of a subscription changed.

    ``result`` holds the fresh rows when the watcher fetches results,
    otherwise None.
    """

    subscription: str
    result: Sequence[Mapping[str, Any]] | None
    source: NotificationSource | str
    reason: NotificationReason | str


@dataclass(frozen=True)
class TimeoutEvent:
    """The backend timed out the session's subscriptions."""

    subscription: str


@dataclass(frozen=True)
class ErrorEvent:
    """The watch loop hit an unrecoverable error and stopped."""

    error: Exception


WatchEvent = ChangeEvent | TimeoutEvent | ErrorEvent
