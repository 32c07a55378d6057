"""Tests for NotificationReceiver and the queue drain."""

import json

import anyio
import pytest

from querynotify import (
    DecodeError,
    InMemoryNotificationDatabase,
    NotificationReceiver,
    NotificationSource,
    receive_sql,
)

pytestmark = pytest.mark.anyio

QUEUE = "notifications"
TIMEOUT_SECONDS = 2
STALE_MESSAGES = 3


def payload(name: str = "foo", session: str = "old-session") -> str:
    return json.dumps({"subscription": name, "id": session})


def non_blocking_receives(db: InMemoryNotificationDatabase) -> int:
    return sum(1 for sql in db.queries if sql == f"RECEIVE * FROM {QUEUE}")


class TestReceiveSql:
    def test_non_blocking(self) -> None:
        assert receive_sql("q", blocking=False) == "RECEIVE * FROM q"

    def test_blocking(self) -> None:
        assert receive_sql("q", blocking=True) == "WAITFOR (RECEIVE * FROM q)"

    def test_blocking_with_timeout(self) -> None:
        sql = receive_sql("q", blocking=True, timeout=1.5)

        assert sql == "WAITFOR (RECEIVE * FROM q), TIMEOUT 1500"

    def test_sub_millisecond_timeout_rounds_up(self) -> None:
        sql = receive_sql("q", blocking=True, timeout=0.0004)

        assert sql == "WAITFOR (RECEIVE * FROM q), TIMEOUT 1"

    def test_timeout_ignored_when_not_blocking(self) -> None:
        assert receive_sql("q", blocking=False, timeout=1) == "RECEIVE * FROM q"


class TestReceive:
    async def test_non_blocking_empty(self, database) -> None:
        receiver = NotificationReceiver(database, QUEUE)

        assert await receiver.receive(blocking=False) is None

    async def test_blocking_waits_for_message(self, database) -> None:
        receiver = NotificationReceiver(database, QUEUE)

        async def deliver() -> None:
            await anyio.sleep(0.01)
            database.enqueue_message("data", "delete", payload())

        with anyio.fail_after(TIMEOUT_SECONDS):
            async with anyio.create_task_group() as tg:
                tg.start_soon(deliver)
                notification = await receiver.wait()

        assert notification is not None
        assert notification.source is NotificationSource.DATA
        assert database.queries == [f"WAITFOR (RECEIVE * FROM {QUEUE})"]

    async def test_blocking_wait_timeout(self, database) -> None:
        receiver = NotificationReceiver(database, QUEUE, receive_timeout=0.05)

        with anyio.fail_after(TIMEOUT_SECONDS):
            assert await receiver.wait() is None


class TestDrain:
    @pytest.mark.parametrize("stale", [0, 1, STALE_MESSAGES])
    async def test_drain_receives_k_plus_one_times(self, database, stale) -> None:
        for i in range(stale):
            database.enqueue_message("data", "insert", payload(f"s{i}"))
        receiver = NotificationReceiver(database, QUEUE)

        discarded = await receiver.drain()

        assert discarded == stale
        assert non_blocking_receives(database) == stale + 1
        assert not any(sql.startswith("WAITFOR") for sql in database.queries)

    async def test_drain_empties_queue(self, database) -> None:
        database.enqueue_message("timeout", "none", payload())
        receiver = NotificationReceiver(database, QUEUE)

        await receiver.drain()

        assert await receiver.receive(blocking=False) is None

    async def test_malformed_stale_message_is_fatal(self, database) -> None:
        database.enqueue({"message_body": "zz"})
        receiver = NotificationReceiver(database, QUEUE)

        with pytest.raises(DecodeError):
            await receiver.drain()

    async def test_drain_records_span(
        self, database, tracer_provider, span_exporter
    ) -> None:
        database.enqueue_message("data", "insert", payload())
        receiver = NotificationReceiver(
            database, QUEUE, tracer=tracer_provider.get_tracer("test")
        )

        await receiver.drain()

        (span,) = span_exporter.get_finished_spans()
        assert span.name == f"drain {QUEUE}"
        assert span.attributes["querynotify.discarded"] == 1
        assert span.attributes["messaging.destination.name"] == QUEUE
