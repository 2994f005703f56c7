from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from fieldsync.db.document_store import OUTBOX_KEY, MemoryDocumentStore
from fieldsync.integrations.base_client import ApiError
from fieldsync.schemas.outbox import OutboxKind, OutboxStatus
from fieldsync.services.outbox_service import OutboxService, backoff_delay
from fieldsync.services.transport import InvalidOutboxKind

T0 = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_service(store=None, clock=None):
    return OutboxService(store or MemoryDocumentStore(), clock=clock or FakeClock())


def test_enqueue_creates_pending_item_with_idempotency_fields():
    service = make_service()

    item = service.enqueue("RDO", 42, {"summary": "Turno A"}, "2026-10-17T11:30:00Z")

    assert item.kind == OutboxKind.RDO
    assert item.employee_id == "42"
    assert item.status == OutboxStatus.PENDING
    assert item.attempts == 0
    assert item.last_error == ""
    assert item.sending_at is None
    assert item.next_retry_at == T0
    assert item.created_at == T0
    assert item.payload["client_id"] == item.client_id
    assert item.payload["client_filled_at"] == "2026-10-17T11:30:00Z"
    assert item.payload["summary"] == "Turno A"


def test_enqueue_twice_returns_same_item():
    service = make_service()

    first = service.enqueue("OS", "7", {"title": "Bomba"}, client_id="abc")
    second = service.enqueue("OS", "7", {"title": "Bomba editada"}, client_id="abc")

    assert second.id == first.id
    assert second.payload["title"] == "Bomba"
    assert len(service.list_items()) == 1


def test_enqueue_dedupes_on_payload_client_id():
    service = make_service()

    first = service.enqueue("FIN", "7", {"client_id": "from-payload", "amount": 10})
    second = service.enqueue("FIN", "7", {"amount": 10}, client_id="from-payload")

    assert first.client_id == "from-payload"
    assert second.id == first.id


def test_same_client_id_for_other_kind_or_employee_is_distinct():
    service = make_service()

    service.enqueue("RDO", "7", {}, client_id="c1")
    service.enqueue("OS", "7", {}, client_id="c1")
    service.enqueue("RDO", "8", {}, client_id="c1")

    assert len(service.list_items()) == 3


def test_enqueue_prepends_most_recent_first():
    clock = FakeClock()
    service = make_service(clock=clock)

    older = service.enqueue("RDO", "1", {})
    clock.advance(seconds=1)
    newer = service.enqueue("RDO", "1", {})

    assert [i.id for i in service.list_items()] == [newer.id, older.id]


def test_enqueue_rejects_unknown_kind():
    service = make_service()

    with pytest.raises(InvalidOutboxKind):
        service.enqueue("EPI", "1", {})
    assert service.list_items() == []


def test_unreadable_entries_are_dropped_on_read():
    store = MemoryDocumentStore({OUTBOX_KEY: [{"id": "x", "kind": "LEGACY"}]})
    service = make_service(store=store)

    assert service.list_items() == []


@pytest.mark.asyncio
async def test_flush_removes_delivered_items():
    service = make_service()
    item = service.enqueue("RDO", "1", {"summary": "ok"})
    transport = AsyncMock()

    remaining = await service.flush(transport)

    assert remaining == []
    assert service.list_items() == []
    sent = transport.send.call_args[0][0]
    assert sent.id == item.id
    assert sent.status == OutboxStatus.SENDING


@pytest.mark.asyncio
async def test_item_is_persisted_as_sending_before_the_remote_call():
    store = MemoryDocumentStore()
    service = make_service(store=store)
    service.enqueue("OS", "1", {})
    seen = {}

    async def send(item):
        seen["stored"] = store.get(OUTBOX_KEY)[0]

    transport = AsyncMock()
    transport.send.side_effect = send
    await service.flush(transport)

    assert seen["stored"]["status"] == "SENDING"
    assert seen["stored"]["sending_at"] is not None


@pytest.mark.asyncio
async def test_conflict_removes_item():
    service = make_service()
    service.enqueue("FIN", "1", {"amount": 50})
    transport = AsyncMock()
    transport.send.side_effect = ApiError("API request failed (409).", status=409)

    remaining = await service.flush(transport)

    assert remaining == []
    assert service.list_items() == []


@pytest.mark.asyncio
async def test_failure_reschedules_with_backoff():
    clock = FakeClock()
    service = make_service(clock=clock)
    service.enqueue("RDO", "1", {})
    transport = AsyncMock()
    transport.send.side_effect = ApiError("API request failed (500).", status=500)

    remaining = await service.flush(transport)

    [item] = remaining
    assert item.status == OutboxStatus.FAILED
    assert item.sending_at is None
    assert item.attempts == 1
    assert item.last_error == "API request failed (500)."
    assert item.next_retry_at == T0 + timedelta(seconds=10)


@pytest.mark.asyncio
async def test_failure_without_message_gets_generic_error():
    service = make_service()
    service.enqueue("RDO", "1", {})
    transport = AsyncMock()
    transport.send.side_effect = RuntimeError()

    [item] = await service.flush(transport)

    assert item.last_error == "send failed"


@pytest.mark.asyncio
async def test_backoff_follows_table_over_consecutive_failures():
    clock = FakeClock()
    service = make_service(clock=clock)
    service.enqueue("OS", "1", {})
    transport = AsyncMock()
    transport.send.side_effect = ApiError("offline")

    delays = []
    for _ in range(6):
        [item] = await service.flush(transport)
        delays.append((item.next_retry_at - clock.now).total_seconds())
        clock.now = item.next_retry_at

    assert delays == [10, 30, 120, 300, 300, 300]
    assert all(b >= a for a, b in zip(delays, delays[1:]))
    assert transport.send.call_count == 6


def test_backoff_delay_table():
    assert [backoff_delay(n).total_seconds() for n in range(0, 7)] == [10, 10, 30, 120, 300, 300, 300]


@pytest.mark.asyncio
async def test_items_not_yet_due_are_not_sent():
    clock = FakeClock()
    service = make_service(clock=clock)
    service.enqueue("RDO", "1", {})
    failing = AsyncMock()
    failing.send.side_effect = ApiError("boom", status=503)
    await service.flush(failing)

    clock.advance(seconds=5)
    transport = AsyncMock()
    remaining = await service.flush(transport)

    transport.send.assert_not_called()
    assert remaining[0].attempts == 1

    clock.advance(seconds=5)
    await service.flush(transport)
    transport.send.assert_called_once()
    assert service.list_items() == []


@pytest.mark.asyncio
async def test_fresh_sending_item_is_skipped_and_stale_one_recovered():
    clock = FakeClock()
    store = MemoryDocumentStore()
    service = make_service(store=store, clock=clock)
    item = service.enqueue("FIN", "1", {})
    doc = store.get(OUTBOX_KEY)
    doc[0]["status"] = "SENDING"
    doc[0]["sending_at"] = "2026-10-17T12:00:00Z"
    store.set(OUTBOX_KEY, doc)

    transport = AsyncMock()
    clock.advance(minutes=4)
    await service.flush(transport)
    transport.send.assert_not_called()

    clock.advance(minutes=2)
    await service.flush(transport)
    transport.send.assert_called_once()
    assert transport.send.call_args[0][0].id == item.id
    assert service.list_items() == []


@pytest.mark.asyncio
async def test_sending_without_timestamp_is_never_due():
    store = MemoryDocumentStore()
    service = make_service(store=store)
    service.enqueue("RDO", "1", {})
    doc = store.get(OUTBOX_KEY)
    doc[0]["status"] = "SENDING"
    store.set(OUTBOX_KEY, doc)

    transport = AsyncMock()
    await service.flush(transport)

    transport.send.assert_not_called()


@pytest.mark.asyncio
async def test_flush_processes_in_stored_order():
    clock = FakeClock()
    service = make_service(clock=clock)
    first = service.enqueue("RDO", "1", {})
    clock.advance(seconds=1)
    second = service.enqueue("OS", "1", {})
    transport = AsyncMock()

    await service.flush(transport)

    sent_ids = [call.args[0].id for call in transport.send.call_args_list]
    assert sent_ids == [second.id, first.id]


@pytest.mark.asyncio
async def test_item_removed_while_sending_is_not_resurrected_on_failure():
    service = make_service()
    item = service.enqueue("RDO", "1", {})

    async def send(sent):
        service.remove(sent.id)
        raise ApiError("timeout")

    transport = AsyncMock()
    transport.send.side_effect = send
    remaining = await service.flush(transport)

    assert remaining == []
    assert service.get(item.id) is None


@pytest.mark.asyncio
async def test_enqueue_during_flush_is_kept():
    service = make_service()
    service.enqueue("RDO", "1", {})
    added = {}

    async def send(sent):
        added["item"] = service.enqueue("OS", "1", {"late": True})

    transport = AsyncMock()
    transport.send.side_effect = send
    remaining = await service.flush(transport)

    assert [i.id for i in remaining] == [added["item"].id]


@pytest.mark.asyncio
async def test_retry_makes_failed_item_due_immediately():
    clock = FakeClock()
    service = make_service(clock=clock)
    item = service.enqueue("OS", "1", {})
    failing = AsyncMock()
    failing.send.side_effect = ApiError("boom", status=500)
    await service.flush(failing)

    [retried] = service.retry(item.id)

    assert retried.status == OutboxStatus.PENDING
    assert retried.sending_at is None
    assert retried.last_error == ""
    assert retried.next_retry_at == clock.now
    assert retried.attempts == 1

    transport = AsyncMock()
    await service.flush(transport)
    transport.send.assert_called_once()


def test_remove_deletes_only_that_item():
    service = make_service()
    keep = service.enqueue("RDO", "1", {})
    drop = service.enqueue("OS", "1", {})

    remaining = service.remove(drop.id)

    assert [i.id for i in remaining] == [keep.id]
    assert service.remove("unknown") == remaining
