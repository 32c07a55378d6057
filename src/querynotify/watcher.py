"""QueryWatcher - the subscription lifecycle state machine."""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import aclosing
from enum import Enum
from typing import get_type_hints
from uuid import uuid4

from opentelemetry.trace import SpanKind, TracerProvider

from querynotify.config import WatchConfig
from querynotify.database import Row, SubscribableDatabase
from querynotify.engine import SubscriptionEngine
from querynotify.errors import InvalidStatementError, UnknownNotificationError
from querynotify.events import ChangeEvent, ErrorEvent, TimeoutEvent, WatchEvent
from querynotify.notification import (
    DATA_CHANGE_REASONS,
    Notification,
    NotificationReason,
    NotificationSource,
)
from querynotify.receiver import NotificationReceiver
from querynotify.registry import Subscription, SubscriptionRegistry
from querynotify.tracing import get_tracer, record_error

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Awaitable[None]]

EVENT_TYPES = (ChangeEvent, TimeoutEvent, ErrorEvent)


class WatchState(Enum):
    DRAINING = "draining"
    REGISTERING_ALL = "registering_all"
    WAITING = "waiting"
    HANDLING = "handling"
    REGISTERING_ONE = "registering_one"
    TERMINATED = "terminated"


class QueryWatcher:
    """Watches named SQL statements for query notifications.

    One session drains stale notifications, registers every subscription,
    then blocks on the queue. Each notification it receives is turned into
    an event, and the subscription that fired is registered again since
    notifications only fire once.

    Usage:
        watcher = QueryWatcher(db, WatchConfig(
            queue="orders_queue",
            options={"service": "orders_service"},
            subscriptions={"open_orders": "SELECT id FROM dbo.orders"},
        ))
        async for event in watcher.watch():
            ...
    """

    def __init__(
        self,
        database: SubscribableDatabase,
        config: WatchConfig,
        *,
        correlation_id: str | None = None,
        tracer_provider: TracerProvider | None = None,
    ) -> None:
        """Initialize the watcher.

        Nothing touches the database until watch() or run() is iterated,
        so handlers registered before that see every event.

        Args:
            database: Backend implementing query() and subscribe().
            config: Queue, options and subscriptions to watch.
            correlation_id: Session id echoed back in notifications.
                A random UUID if not set.
            tracer_provider: OpenTelemetry TracerProvider. Uses global if not set.
        """
        if not isinstance(database, SubscribableDatabase):
            msg = "database must implement query() and subscribe()"
            raise TypeError(msg)

        self._database = database
        self._config = config
        self._correlation_id = correlation_id or str(uuid4())
        self._registry = SubscriptionRegistry(config, self._correlation_id)

        self._tracer = get_tracer(tracer_provider)
        self._receiver = NotificationReceiver(
            database, config.queue, config.receive_timeout, self._tracer
        )
        self._engine = SubscriptionEngine(database, self._receiver, self._tracer)

        self._handlers: dict[type, list[EventHandler]] = {}
        self._state = WatchState.DRAINING
        self._notification: Notification | None = None
        self._pending: Subscription | None = None
        self._watching = False
        self._closed = False

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def state(self) -> WatchState:
        return self._state

    def handler(self, func: EventHandler) -> EventHandler:
        """Decorator to register an event handler for run().

        The event type is inferred from the first parameter's type hint.

        Usage:
            @watcher.handler
            async def on_change(event: ChangeEvent) -> None:
                ...
        """
        hints = get_type_hints(func)
        params = list(inspect.signature(func).parameters.keys())

        if not params:
            msg = f"Handler {func.__name__} must have at least one parameter"
            raise TypeError(msg)

        first_param = params[0]
        if first_param not in hints:
            msg = f"First parameter '{first_param}' of {func.__name__} must be typed"
            raise TypeError(msg)

        event_type = hints[first_param]
        if event_type not in EVENT_TYPES:
            names = ", ".join(t.__name__ for t in EVENT_TYPES)
            msg = f"{func.__name__} must handle one of {names}"
            raise TypeError(msg)

        self._handlers.setdefault(event_type, []).append(func)
        return func

    def watch(self) -> AsyncGenerator[WatchEvent, None]:
        """Start the session and iterate over its events.

        The iterator ends after yielding an ErrorEvent, or once the watcher
        is closed. A terminated watcher cannot be watched again.
        """
        if self._closed:
            msg = "Watcher is closed"
            raise RuntimeError(msg)
        if self._state is WatchState.TERMINATED:
            msg = "Watcher has terminated"
            raise RuntimeError(msg)
        if self._watching:
            msg = "Watcher is already watching"
            raise RuntimeError(msg)
        self._watching = True
        return self._watch_iter()

    async def run(self) -> None:
        """Watch and dispatch events to registered handlers.

        An ErrorEvent without a handler is raised.
        """
        async with aclosing(self.watch()) as events:
            async for event in events:
                handlers = self._handlers.get(type(event), [])
                if isinstance(event, ErrorEvent) and not handlers:
                    raise event.error
                for handler in handlers:
                    await handler(event)

    async def _watch_iter(self) -> AsyncGenerator[WatchEvent, None]:
        self._state = WatchState.DRAINING
        logger.info(
            "Watching %d subscriptions on %s (session %s)",
            len(self._registry),
            self._config.queue,
            self._correlation_id,
        )
        try:
            while not self._closed and self._state is not WatchState.TERMINATED:
                try:
                    event = await self._step()
                except Exception as e:
                    logger.error(
                        "Watch on %s stopped", self._config.queue, exc_info=True
                    )
                    self._state = WatchState.TERMINATED
                    event = ErrorEvent(e)

                if event is not None:
                    yield event
        finally:
            self._watching = False

    async def _step(self) -> WatchEvent | None:
        """Run the current state and move to the next one."""
        state = self._state

        if state is WatchState.DRAINING:
            discarded = await self._receiver.drain()
            if discarded:
                logger.info("Discarded %d stale notifications", discarded)
            self._state = WatchState.REGISTERING_ALL

        elif state is WatchState.REGISTERING_ALL:
            await self._engine.register_all(self._registry)
            self._state = WatchState.WAITING

        elif state is WatchState.REGISTERING_ONE:
            subscription, self._pending = self._pending, None
            if subscription is not None:
                await self._engine.register_one(subscription)
            self._state = WatchState.WAITING

        elif state is WatchState.WAITING:
            notification = await self._receiver.wait()
            if notification is not None:
                self._notification = notification
                self._state = WatchState.HANDLING

        elif state is WatchState.HANDLING:
            notification, self._notification = self._notification, None
            self._state = WatchState.WAITING
            if notification is not None:
                return await self._handle(notification)

        return None

    async def _handle(self, notification: Notification) -> WatchEvent | None:
        if notification.correlation_id != self._correlation_id:
            logger.debug("Ignoring notification from another session: %s", notification)
            return None

        name = notification.subscription_name
        source, reason = notification.source, notification.reason

        if source == NotificationSource.TIMEOUT and reason == NotificationReason.NONE:
            # A backend timeout drops every subscription of the session.
            logger.warning("Subscription %s timed out, registering all again", name)
            self._state = WatchState.REGISTERING_ALL
            return TimeoutEvent(subscription=name)

        if source == NotificationSource.DATA and reason in DATA_CHANGE_REASONS:
            subscription = self._registry.lookup(name)
            result = None
            if self._config.fetch_results:
                result = await self._fetch(subscription)
            self._pending = subscription
            self._state = WatchState.REGISTERING_ONE
            return ChangeEvent(
                subscription=name, result=result, source=source, reason=reason
            )

        if (
            source == NotificationSource.STATEMENT
            and reason == NotificationReason.INVALID
        ):
            subscription = self._registry.lookup(name)
            raise InvalidStatementError(subscription.name, subscription.sql)

        raise UnknownNotificationError(notification)

    async def _fetch(self, subscription: Subscription) -> Sequence[Row]:
        with self._tracer.start_as_current_span(
            f"fetch {subscription.name}",
            kind=SpanKind.CLIENT,
            attributes={"querynotify.subscription": subscription.name},
        ) as span:
            try:
                return await self._database.query(subscription.sql)
            except Exception as e:
                record_error(span, e)
                raise

    async def close(self) -> None:
        """Stop the watcher before its next step.

        A blocking receive already in flight is not interrupted; cancel the
        surrounding task to abandon it.
        """
        self._closed = True

    async def __aenter__(self) -> QueryWatcher:
        """Enter async context."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context."""
        await self.close()
