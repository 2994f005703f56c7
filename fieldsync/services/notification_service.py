import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from fieldsync.core.datetime_utils import as_utc, to_iso, utcnow
from fieldsync.core.observability import log_step
from fieldsync.db.document_store import NOTIFICATIONS_KEY, DocumentStore
from fieldsync.integrations.base_client import ApiError
from fieldsync.integrations.logistics_client import LogisticsApiClient
from fieldsync.schemas.notifications import NotificationItem, NotificationsState

logger = logging.getLogger(__name__)

DEFAULT_TOAST = "Nova notificação"
TOAST_SECONDS = 3.5


def normalize_id(value: Any) -> int | str:
    """Numeric ids compare by value ("5" == 5); anything else by its string form."""
    if isinstance(value, bool):
        return f"s:{value}"
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return f"s:{text}"


def merge_notifications(existing: Iterable[NotificationItem],
                        incoming: Iterable[NotificationItem]) -> list[NotificationItem]:
    """Union keyed by normalized id, incoming wins, newest first."""
    merged: dict[int | str, NotificationItem] = {}
    for item in existing:
        merged[normalize_id(item.id)] = item
    for item in incoming:
        merged[normalize_id(item.id)] = item
    return sorted(merged.values(), key=lambda item: as_utc(item.created_at), reverse=True)


class NotificationService:
    """
    Keeps a local, de-duplicated copy of an employee's notification feed.

    `poll` asks only for notifications newer than the high-water-mark and
    merges them in. New arrivals raise a short-lived toast. State survives
    restarts through the document store.
    """

    def __init__(self, client: LogisticsApiClient, store: DocumentStore, employee_id: str | int,
                 clock: Callable[[], datetime] = utcnow, toast_seconds: float = TOAST_SECONDS):
        self.client = client
        self.store = store
        self.employee_id = str(employee_id)
        self.clock = clock
        self.toast_seconds = toast_seconds
        self.key = f"{NOTIFICATIONS_KEY}:{self.employee_id}"
        self.toast: str = ""
        self._toast_handle: asyncio.TimerHandle | None = None
        self.state = self._load()

    def _load(self) -> NotificationsState:
        raw = self.store.get(self.key)
        if not raw:
            return NotificationsState()
        try:
            return NotificationsState.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable notification state", extra={"extra": {"error": str(e)}})
            return NotificationsState()

    def _save(self) -> None:
        self.store.set(self.key, self.state.model_dump(mode="json"))

    @property
    def items(self) -> list[NotificationItem]:
        return self.state.items

    @property
    def since(self) -> str | None:
        return self.state.since

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.state.items if item.read_at is None)

    def _advance_since(self, batch: list[NotificationItem]) -> str | None:
        candidates = [as_utc(item.created_at) for item in batch]
        previous = as_utc(self.state.since)
        if previous is not None:
            candidates.append(previous)
        if not candidates:
            return self.state.since
        return to_iso(max(candidates))

    @log_step("notifications.poll")
    async def poll(self) -> list[NotificationItem]:
        """
        Fetches and merges new notifications. Returns the items that were not
        known locally before this poll. Failures leave local state untouched.
        """
        try:
            raw_items = await self.client.list_notifications(self.employee_id, self.state.since)
        except ApiError as e:
            logger.warning("Notification poll failed",
                           extra={"extra": {"employee_id": self.employee_id, "status": e.status, "error": e.message}})
            return []

        incoming: list[NotificationItem] = []
        for raw in raw_items:
            try:
                incoming.append(NotificationItem.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed notification", extra={"extra": {"item": raw, "error": str(e)}})
        if not incoming:
            return []

        known = {normalize_id(item.id) for item in self.state.items}
        fresh = [item for item in incoming if normalize_id(item.id) not in known]

        self.state = NotificationsState(
            items=merge_notifications(self.state.items, incoming),
            since=self._advance_since(incoming),
        )
        self._save()

        if fresh:
            latest = max(fresh, key=lambda item: as_utc(item.created_at))
            self._show_toast(latest.title or DEFAULT_TOAST)
        logger.info("Notifications merged",
                    extra={"extra": {"employee_id": self.employee_id, "incoming": len(incoming),
                                     "new": len(fresh), "since": self.state.since}})
        return fresh

    def _show_toast(self, text: str) -> None:
        self.toast = text
        if self._toast_handle is not None:
            self._toast_handle.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._toast_handle = None
            return
        self._toast_handle = loop.call_later(self.toast_seconds, self._clear_toast)

    def _clear_toast(self) -> None:
        self.toast = ""
        self._toast_handle = None

    async def mark_read(self, ids: Iterable[Any]) -> list[NotificationItem]:
        """Marks numeric ids as read remotely, then locally. Other ids are ignored."""
        numeric = sorted({value for value in (normalize_id(i) for i in ids) if isinstance(value, int)})
        if not numeric:
            return self.state.items

        try:
            await self.client.mark_notifications_read(self.employee_id, numeric)
        except ApiError as e:
            logger.warning("Mark-read failed",
                           extra={"extra": {"employee_id": self.employee_id, "ids": numeric, "error": e.message}})
            return self.state.items

        now = self.clock()
        targets = set(numeric)
        self.state = NotificationsState(
            items=[item.model_copy(update={"read_at": now}) if normalize_id(item.id) in targets else item
                   for item in self.state.items],
            since=self.state.since,
        )
        self._save()
        return self.state.items

    def close(self) -> None:
        if self._toast_handle is not None:
            self._toast_handle.cancel()
        self._clear_toast()
