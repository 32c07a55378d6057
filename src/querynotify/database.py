"""Contract for the database a watcher talks to."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

Row = Mapping[str, Any]


@dataclass(frozen=True)
class SubscribeRequest:
    """Everything the backend needs to register one query notification."""

    queue: str
    sql: str
    message: str
    options: Mapping[str, Any] = field(default_factory=dict)
    timeout: int | None = None


@runtime_checkable
class SubscribableDatabase(Protocol):
    """Protocol for async databases that support query notifications.

    Connection management, pooling and driver details stay with the
    implementation; the watcher only ever calls these two methods.
    """

    async def query(self, sql: str) -> Sequence[Row]:
        """Execute a statement and return its rows."""
        ...

    async def subscribe(self, request: SubscribeRequest) -> None:
        """Register a query notification for ``request.sql``."""
        ...
