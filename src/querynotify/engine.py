"""Registering subscriptions with the backend."""

from __future__ import annotations

import logging

from opentelemetry.trace import SpanKind, Tracer

from querynotify.database import SubscribableDatabase
from querynotify.receiver import NotificationReceiver
from querynotify.registry import Subscription, SubscriptionRegistry
from querynotify.tracing import get_tracer, messaging_attributes, record_error

logger = logging.getLogger(__name__)


class SubscriptionEngine:
    """Issues (re-)registrations, draining the queue before each one."""

    def __init__(
        self,
        database: SubscribableDatabase,
        receiver: NotificationReceiver,
        tracer: Tracer | None = None,
    ) -> None:
        self._database = database
        self._receiver = receiver
        self._tracer = tracer or get_tracer()

    async def register_one(self, subscription: Subscription) -> None:
        """Drain the queue, then register a single subscription."""
        await self._receiver.drain()

        attributes = messaging_attributes(subscription.queue, "subscribe")
        attributes["querynotify.subscription"] = subscription.name
        with self._tracer.start_as_current_span(
            f"subscribe {subscription.name}",
            kind=SpanKind.CLIENT,
            attributes=attributes,
        ) as span:
            try:
                await self._database.subscribe(subscription.request())
            except Exception as e:
                record_error(span, e)
                raise
        logger.debug("Subscribed %s", subscription.name)

    async def register_all(self, registry: SubscriptionRegistry) -> None:
        """Register every subscription, one at a time.

        Registrations share the queue drain, so they never run concurrently.
        The first failure propagates and the rest are not attempted.
        """
        for subscription in registry:
            await self.register_one(subscription)
        logger.info("Registered %d subscriptions", len(registry))
