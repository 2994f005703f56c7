from datetime import datetime, timedelta
from typing import Callable

from fieldsync.core.config import settings
from fieldsync.core.datetime_utils import utcnow
from fieldsync.db.document_store import DocumentStore, SqlDocumentStore
from fieldsync.db.session import build_engine, build_session_factory
from fieldsync.integrations.logistics_client import LogisticsApiClient
from .connectivity_service import ConnectivityService
from .notification_service import NotificationService
from .outbox_service import OutboxService
from .transport import OutboxTransport


class SyncRuntime:
    """Owns the sync components for one device; created at startup, closed at shutdown."""

    def __init__(self, store: DocumentStore, client: LogisticsApiClient, employee_id: str | None = None,
                 clock: Callable[[], datetime] = utcnow, online: bool = True):
        self.store = store
        self.client = client
        self.employee_id = employee_id
        self.transport = OutboxTransport(client)
        self.outbox = OutboxService(
            store, clock=clock, stale_after=timedelta(seconds=settings.OUTBOX_SENDING_STALE_SECONDS)
        )
        self.notifications: NotificationService | None = None
        if employee_id:
            self.notifications = NotificationService(
                client, store, employee_id, clock=clock, toast_seconds=settings.NOTIFICATION_TOAST_SECONDS
            )
        self.connectivity = ConnectivityService(
            self.outbox, self.transport, client, employee_id=employee_id,
            refresh=self.refresh_lists, online=online,
        )

    @classmethod
    def from_settings(cls) -> "SyncRuntime":
        store = SqlDocumentStore(build_session_factory(build_engine()))
        return cls(store, LogisticsApiClient(), employee_id=settings.EMPLOYEE_ID)

    async def refresh_lists(self, employee_id: str) -> None:
        # Accepted submissions may have produced notifications server side
        if self.notifications is not None and self.notifications.employee_id == str(employee_id):
            await self.notifications.poll()

    async def close(self) -> None:
        if self.notifications is not None:
            self.notifications.close()
        await self.client.close()
