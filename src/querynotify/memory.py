"""In-memory query notification backend for testing and development."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from querynotify.database import Row, SubscribeRequest
from querynotify.notification import (
    MESSAGE_BODY_FIELD,
    NotificationMessage,
    NotificationReason,
    NotificationSource,
    encode_message_body,
)

_RECEIVE_PATTERN = re.compile(
    r"^(?P<wait>WAITFOR \()?RECEIVE \* FROM (?P<queue>[^\s)]+)\)?"
    r"(?:, TIMEOUT (?P<timeout>\d+))?$"
)


class InMemoryNotificationDatabase:
    """Simulates a database with query notifications and a single queue.

    Subscriptions are one-shot like the real thing: firing a notification
    removes the subscription until it is registered again. Every statement
    and subscribe request is recorded for inspection.
    """

    def __init__(self, queue: str = "notifications") -> None:
        self.queue = queue
        self.queries: list[str] = []
        self.requests: list[SubscribeRequest] = []
        self._active: dict[str, SubscribeRequest] = {}
        self._results: dict[str, list[Row]] = {}
        self._subscribed = anyio.Event()
        self._send: MemoryObjectSendStream[Row]
        self._receive: MemoryObjectReceiveStream[Row]
        self._send, self._receive = anyio.create_memory_object_stream[Row](math.inf)
        self._closed = False

    @property
    def active(self) -> list[SubscribeRequest]:
        """Subscriptions that will fire on the next change."""
        return list(self._active.values())

    def set_result(self, sql: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Rows returned when ``sql`` is queried."""
        self._results[sql] = [dict(row) for row in rows]

    async def query(self, sql: str) -> list[Row]:
        if self._closed:
            msg = "Database is closed"
            raise RuntimeError(msg)
        self.queries.append(sql)

        match = _RECEIVE_PATTERN.match(sql)
        if match is None:
            return list(self._results.get(sql, []))

        if match["queue"] != self.queue:
            msg = f"Invalid object name '{match['queue']}'"
            raise ValueError(msg)
        if not match["wait"]:
            try:
                return [self._receive.receive_nowait()]
            except anyio.WouldBlock:
                return []

        timeout = int(match["timeout"]) / 1000 if match["timeout"] else None
        with anyio.move_on_after(timeout):
            return [await self._receive.receive()]
        return []

    async def subscribe(self, request: SubscribeRequest) -> None:
        if self._closed:
            msg = "Database is closed"
            raise RuntimeError(msg)
        self.requests.append(request)
        self._active[request.message] = request
        self._subscribed.set()
        self._subscribed = anyio.Event()

    async def wait_for_subscriptions(self, count: int) -> None:
        """Wait until ``count`` subscribe calls have been made in total."""
        while len(self.requests) < count:
            await self._subscribed.wait()

    def fire(
        self,
        subscription: str,
        reason: NotificationReason | str = NotificationReason.UPDATE,
        source: NotificationSource | str = NotificationSource.DATA,
    ) -> int:
        """Deliver a notification to every active subscription by that name.

        Returns the number of notifications queued.
        """
        fired = [
            request
            for request in self._active.values()
            if NotificationMessage.model_validate_json(request.message).subscription
            == subscription
        ]
        for request in fired:
            del self._active[request.message]
            self.enqueue_message(source, reason, request.message)
        return len(fired)

    def expire(self) -> int:
        """Time out every active subscription."""
        expired = list(self._active.values())
        self._active.clear()
        for request in expired:
            self.enqueue_message(
                NotificationSource.TIMEOUT, NotificationReason.NONE, request.message
            )
        return len(expired)

    def enqueue_message(
        self,
        source: NotificationSource | str,
        reason: NotificationReason | str,
        message: str,
    ) -> None:
        """Queue a notification carrying an arbitrary payload."""
        body = encode_message_body(source, reason, message)
        self.enqueue({MESSAGE_BODY_FIELD: body.hex()})

    def enqueue(self, row: Row) -> None:
        """Queue a raw row, exactly as RECEIVE will return it."""
        self._send.send_nowait(row)

    async def close(self) -> None:
        self._closed = True
        await self._send.aclose()
        await self._receive.aclose()

    async def __aenter__(self) -> InMemoryNotificationDatabase:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
