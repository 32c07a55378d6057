"""Test fixtures for querynotify."""

from collections.abc import AsyncGenerator

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from querynotify import InMemoryNotificationDatabase, WatchConfig

QUEUE = "notifications"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def database() -> AsyncGenerator[InMemoryNotificationDatabase, None]:
    """Create an in-memory notification backend."""
    async with InMemoryNotificationDatabase(QUEUE) as db:
        yield db


@pytest.fixture
def watch_config() -> WatchConfig:
    """Two subscriptions on the test queue."""
    return WatchConfig(
        queue=QUEUE,
        options={"service": "notification_service"},
        subscriptions={"foo": "SELECT 1", "bar": "SELECT 2"},
    )


@pytest.fixture
def span_exporter():
    """Create an in-memory span exporter for testing."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    """Create a tracer provider with in-memory exporter."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider
