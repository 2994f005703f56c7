import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from fieldsync.core.datetime_utils import as_utc, to_iso, utcnow
from fieldsync.core.observability import log_step
from fieldsync.db.document_store import OUTBOX_KEY, DocumentStore
from fieldsync.integrations.base_client import ApiError
from fieldsync.schemas.outbox import OutboxItem, OutboxStatus
from .transport import Transport, parse_kind

logger = logging.getLogger(__name__)

# Retry delay by attempt number; anything past the table uses the cap
BACKOFF_SCHEDULE = {1: 10, 2: 30, 3: 120}
BACKOFF_CAP_SECONDS = 300
SENDING_STALE_AFTER = timedelta(minutes=5)


def backoff_delay(attempts: int) -> timedelta:
    if attempts <= 1:
        return timedelta(seconds=BACKOFF_SCHEDULE[1])
    return timedelta(seconds=BACKOFF_SCHEDULE.get(attempts, BACKOFF_CAP_SECONDS))


class OutboxService:
    """
    Local-first queue of submissions waiting for the logistics API.

    The queue is one document in the store, rewritten as a whole on every
    mutation. Mutations never await between read and write, so triggers that
    interleave (manual flush, connectivity event, timer) always see a
    consistent queue. An item is marked SENDING and persisted before the
    remote call; a SENDING item older than `stale_after` is presumed abandoned
    and becomes eligible again.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow,
                 stale_after: timedelta = SENDING_STALE_AFTER, key: str = OUTBOX_KEY):
        self.store = store
        self.clock = clock
        self.stale_after = stale_after
        self.key = key

    def _read(self) -> list[OutboxItem]:
        raw = self.store.get(self.key, [])
        if not isinstance(raw, list):
            logger.warning("Outbox document is not a list, starting empty")
            return []
        items: list[OutboxItem] = []
        for entry in raw:
            try:
                items.append(OutboxItem.model_validate(entry))
            except ValidationError as e:
                logger.warning("Dropping unreadable outbox entry",
                               extra={"extra": {"entry": entry, "error": str(e)}})
        return items

    def _write(self, items: list[OutboxItem]) -> None:
        self.store.set(self.key, [item.model_dump(mode="json") for item in items])

    def _replace(self, item_id: str, update: Callable[[OutboxItem], OutboxItem | None]) -> list[OutboxItem]:
        """Applies `update` to one item of the stored queue; None removes it."""
        items = []
        for item in self._read():
            if item.id == item_id:
                item = update(item)
                if item is None:
                    continue
            items.append(item)
        self._write(items)
        return items

    def list_items(self) -> list[OutboxItem]:
        return self._read()

    def get(self, item_id: str) -> OutboxItem | None:
        return next((item for item in self._read() if item.id == item_id), None)

    def enqueue(self, kind: Any, employee_id: str | int, payload: dict[str, Any] | None,
                client_filled_at: datetime | str | None = None, client_id: str | None = None) -> OutboxItem:
        """
        Queues a submission. Enqueueing the same (employee, kind, client_id)
        again returns the queued item unchanged.
        """
        kind = parse_kind(kind)
        employee_id = str(employee_id)
        payload = dict(payload or {})
        client_id = client_id or payload.get("client_id") or str(uuid.uuid4())
        now = self.clock()
        filled_at = as_utc(client_filled_at) or now

        current = self._read()
        for entry in current:
            if (entry.employee_id == employee_id and entry.kind == kind
                    and (entry.client_id == client_id or entry.payload.get("client_id") == client_id)):
                logger.info("Outbox duplicate ignored",
                            extra={"extra": {"item_id": entry.id, "kind": kind.value, "client_id": client_id}})
                return entry

        item = OutboxItem(
            id=str(uuid.uuid4()),
            kind=kind,
            employee_id=employee_id,
            payload={**payload, "client_id": client_id, "client_filled_at": to_iso(filled_at)},
            client_id=client_id,
            client_filled_at=filled_at,
            created_at=now,
            status=OutboxStatus.PENDING,
            attempts=0,
            last_error="",
            next_retry_at=now,
        )
        self._write([item, *current])
        logger.info("Outbox item queued",
                    extra={"extra": {"item_id": item.id, "kind": kind.value, "employee_id": employee_id}})
        return item

    def is_due(self, item: OutboxItem, now: datetime) -> bool:
        if item.status == OutboxStatus.SENDING:
            sending_at = as_utc(item.sending_at)
            if sending_at is None or now - sending_at <= self.stale_after:
                return False
        next_retry_at = as_utc(item.next_retry_at)
        return next_retry_at is None or next_retry_at <= now

    def _claim(self, item_id: str) -> OutboxItem | None:
        """Marks the item SENDING if it is still queued and due."""
        claimed: list[OutboxItem] = []
        now = self.clock()

        def mark(item: OutboxItem) -> OutboxItem:
            if not self.is_due(item, now):
                return item
            item = item.model_copy(update={"status": OutboxStatus.SENDING, "sending_at": now})
            claimed.append(item)
            return item

        self._replace(item_id, mark)
        return claimed[0] if claimed else None

    def _record_failure(self, item_id: str, error: Exception) -> None:
        def fail(item: OutboxItem) -> OutboxItem:
            attempts = item.attempts + 1
            now = self.clock()
            return item.model_copy(update={
                "status": OutboxStatus.FAILED,
                "sending_at": None,
                "attempts": attempts,
                "last_error": str(error) or "send failed",
                "next_retry_at": now + backoff_delay(attempts),
            })

        items = self._replace(item_id, fail)
        failed = next((item for item in items if item.id == item_id), None)
        if failed is not None:
            logger.warning("Outbox send failed, rescheduled",
                           extra={"extra": {"item_id": item_id, "attempts": failed.attempts,
                                            "next_retry_at": failed.next_retry_at, "error": failed.last_error}})

    @log_step("outbox.flush")
    async def flush(self, transport: Transport) -> list[OutboxItem]:
        """
        Sends every due item once, in stored order, and returns what remains.

        Delivered items and items the server reports as already applied (409)
        are removed; other failures are rescheduled by the backoff table.
        """
        now = self.clock()
        snapshot = self._read()
        for candidate in snapshot:
            if not self.is_due(candidate, now):
                continue
            item = self._claim(candidate.id)
            if item is None:
                continue

            try:
                await transport.send(item)
            except Exception as e:
                if isinstance(e, ApiError) and e.is_conflict:
                    self._replace(item.id, lambda _: None)
                    logger.info("Outbox item already applied remotely, dropped",
                                extra={"extra": {"item_id": item.id, "kind": item.kind.value}})
                    continue
                self._record_failure(item.id, e)
                continue

            self._replace(item.id, lambda _: None)
            logger.info("Outbox item delivered",
                        extra={"extra": {"item_id": item.id, "kind": item.kind.value}})

        return self._read()

    def retry(self, item_id: str) -> list[OutboxItem]:
        """Makes the item due immediately, ignoring the backoff schedule."""
        now = self.clock()
        return self._replace(item_id, lambda item: item.model_copy(update={
            "status": OutboxStatus.PENDING,
            "sending_at": None,
            "last_error": "",
            "next_retry_at": now,
        }))

    def remove(self, item_id: str) -> list[OutboxItem]:
        return self._replace(item_id, lambda _: None)
