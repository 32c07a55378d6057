"""querynotify: watch SQL query notifications and republish them as events."""

from querynotify.config import WatchConfig
from querynotify.database import SubscribableDatabase, SubscribeRequest
from querynotify.engine import SubscriptionEngine
from querynotify.errors import (
    DecodeError,
    InvalidStatementError,
    ProtocolError,
    QueryNotifyError,
    UnknownNotificationError,
    UnknownSubscriptionError,
)
from querynotify.events import ChangeEvent, ErrorEvent, TimeoutEvent, WatchEvent
from querynotify.memory import InMemoryNotificationDatabase
from querynotify.notification import (
    Notification,
    NotificationReason,
    NotificationSource,
    decode_notification,
)
from querynotify.receiver import NotificationReceiver, receive_sql
from querynotify.registry import Subscription, SubscriptionRegistry
from querynotify.watcher import QueryWatcher, WatchState

__all__ = [
    # config
    "WatchConfig",
    # backend
    "SubscribableDatabase",
    "SubscribeRequest",
    "InMemoryNotificationDatabase",
    # notifications
    "Notification",
    "NotificationReason",
    "NotificationSource",
    "decode_notification",
    # subscriptions
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionEngine",
    "NotificationReceiver",
    "receive_sql",
    # watcher
    "QueryWatcher",
    "WatchState",
    "ChangeEvent",
    "ErrorEvent",
    "TimeoutEvent",
    "WatchEvent",
    # errors
    "QueryNotifyError",
    "DecodeError",
    "ProtocolError",
    "InvalidStatementError",
    "UnknownNotificationError",
    "UnknownSubscriptionError",
]
