"""Exceptions raised by the watch loop and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from querynotify.notification import Notification


class QueryNotifyError(Exception):
    """Base class for querynotify errors."""


class DecodeError(QueryNotifyError):
    """A queue message could not be decoded into a notification."""


class ProtocolError(QueryNotifyError):
    """The backend returned something its contract does not allow."""


class UnknownNotificationError(ProtocolError):
    """A notification carried a (source, reason) pair the watcher can't handle."""

    def __init__(self, notification: Notification) -> None:
        self.notification = notification
        super().__init__(
            "Unknown query notification: "
            f"source={notification.source!s} reason={notification.reason!s} "
            f"subscription={notification.subscription_name!r}"
        )


class InvalidStatementError(ProtocolError):
    """The backend rejected a subscription's SQL as not subscribable."""

    def __init__(self, subscription: str, sql: str) -> None:
        self.subscription = subscription
        self.sql = sql
        super().__init__(
            f"Subscription {subscription!r} has an invalid statement: {sql}"
        )


class UnknownSubscriptionError(ProtocolError, KeyError):
    """A notification named a subscription this session never registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown subscription: {name!r}")

    def __str__(self) -> str:
        return str(self.args[0])
