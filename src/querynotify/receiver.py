"""Receiving and draining the notification queue."""

from __future__ import annotations

import logging
import math

from opentelemetry.trace import SpanKind, Tracer

from querynotify.database import SubscribableDatabase
from querynotify.notification import Notification, decode_notification
from querynotify.tracing import get_tracer, messaging_attributes, record_error

logger = logging.getLogger(__name__)


def receive_sql(
    queue: str, *, blocking: bool, timeout: float | None = None
) -> str:
    """Build the RECEIVE statement for a queue.

    The blocking form waits server-side until a message arrives, or until
    ``timeout`` seconds have passed when one is given.
    """
    sql = f"RECEIVE * FROM {queue}"
    if not blocking:
        return sql
    sql = f"WAITFOR ({sql})"
    if timeout is not None:
        sql = f"{sql}, TIMEOUT {math.ceil(timeout * 1000)}"
    return sql


class NotificationReceiver:
    """Reads notifications from a single service broker queue."""

    def __init__(
        self,
        database: SubscribableDatabase,
        queue: str,
        receive_timeout: float | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        """Initialize the receiver.

        Args:
            database: Backend the RECEIVE statements run against.
            queue: Name of the notification queue.
            receive_timeout: Server-side wait for blocking receives, in
                seconds. None waits until a message arrives.
            tracer: OpenTelemetry tracer. Uses the global provider if not set.
        """
        self._database = database
        self._queue = queue
        self._receive_timeout = receive_timeout
        self._tracer = tracer or get_tracer()

    @property
    def queue(self) -> str:
        return self._queue

    async def receive(self, *, blocking: bool) -> Notification | None:
        """Receive and decode at most one notification.

        Returns None if the queue was empty (or the wait timed out).
        """
        sql = receive_sql(
            self._queue, blocking=blocking, timeout=self._receive_timeout
        )
        rows = await self._database.query(sql)
        return decode_notification(rows)

    async def wait(self) -> Notification | None:
        """Blocking receive, traced as a consumer span."""
        with self._tracer.start_as_current_span(
            f"receive {self._queue}",
            kind=SpanKind.CONSUMER,
            attributes=messaging_attributes(self._queue, "receive"),
        ) as span:
            try:
                notification = await self.receive(blocking=True)
            except Exception as e:
                record_error(span, e)
                raise
            if notification is not None:
                span.set_attribute(
                    "querynotify.subscription", notification.subscription_name
                )
            return notification

    async def drain(self) -> int:
        """Discard everything already in the queue.

        Keeps receiving without blocking until the queue reports empty and
        returns the number of discarded notifications. There is no upper
        bound: a producer that outpaces the drain keeps it going.
        """
        discarded = 0
        with self._tracer.start_as_current_span(
            f"drain {self._queue}",
            attributes=messaging_attributes(self._queue, "drain"),
        ) as span:
            while True:
                notification = await self.receive(blocking=False)
                if notification is None:
                    break
                logger.debug("Discarding stale notification: %s", notification)
                discarded += 1
            span.set_attribute("querynotify.discarded", discarded)
        return discarded
