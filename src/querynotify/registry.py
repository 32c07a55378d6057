"""Named subscriptions of a watch session."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from querynotify.config import WatchConfig
from querynotify.database import SubscribeRequest
from querynotify.errors import UnknownSubscriptionError
from querynotify.notification import NotificationMessage


@dataclass(frozen=True)
class Subscription:
    """One watched statement, as registered with the backend."""

    name: str
    sql: str
    queue: str
    correlation_id: str
    options: Mapping[str, Any] = field(default_factory=dict)
    timeout: int | None = None

    @property
    def message(self) -> str:
        """Payload the backend echoes back inside each notification."""
        return NotificationMessage(
            subscription=self.name, id=self.correlation_id
        ).model_dump_json()

    def request(self) -> SubscribeRequest:
        return SubscribeRequest(
            queue=self.queue,
            sql=self.sql,
            message=self.message,
            options=self.options,
            timeout=self.timeout,
        )


class SubscriptionRegistry:
    """Read-only mapping of subscription name to Subscription."""

    def __init__(self, config: WatchConfig, correlation_id: str) -> None:
        if not config.subscriptions:
            msg = "at least one subscription is required"
            raise ValueError(msg)

        self._correlation_id = correlation_id
        self._subscriptions: dict[str, Subscription] = {}
        for name, sql in config.subscriptions.items():
            self._register(name, sql, config)

    def _register(self, name: str, sql: str, config: WatchConfig) -> None:
        self._subscriptions[name] = Subscription(
            name=name,
            sql=sql,
            queue=config.queue,
            correlation_id=self._correlation_id,
            options=MappingProxyType(dict(config.options)),
            timeout=config.timeout,
        )

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    def lookup(self, name: str) -> Subscription:
        """Get a subscription by name.

        Raises:
            UnknownSubscriptionError: No subscription with that name.
        """
        try:
            return self._subscriptions[name]
        except KeyError:
            raise UnknownSubscriptionError(name) from None

    def names(self) -> list[str]:
        return list(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(self._subscriptions.values())

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, name: object) -> bool:
        return name in self._subscriptions
