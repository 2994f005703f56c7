import logging
from typing import Awaitable, Callable

from fieldsync.integrations.logistics_client import LogisticsApiClient
from fieldsync.schemas.outbox import OutboxItem
from .outbox_service import OutboxService
from .transport import Transport

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[str], Awaitable[None]]
TickCallback = Callable[[], None]


class ConnectivityService:
    """
    Tracks whether the logistics API is reachable and drains the outbox
    when it becomes reachable again.

    The host environment reports transitions through `set_online`; `probe`
    derives the state from a ping for hosts that have no such signal.
    """

    def __init__(self, outbox: OutboxService, transport: Transport, client: LogisticsApiClient,
                 employee_id: str | None = None, refresh: RefreshCallback | None = None,
                 on_tick: TickCallback | None = None, online: bool = True):
        self.outbox = outbox
        self.transport = transport
        self.client = client
        self.employee_id = employee_id
        self.refresh = refresh
        self.on_tick = on_tick
        self.is_online = online

    async def flush_outbox(self) -> list[OutboxItem] | None:
        """Flushes the outbox unless offline, then refreshes dependent lists."""
        if not self.is_online:
            logger.debug("Offline, outbox flush skipped")
            return None
        remaining = await self.outbox.flush(self.transport)
        if self.on_tick is not None:
            self.on_tick()
        if self.employee_id and self.refresh is not None:
            await self.refresh(self.employee_id)
        return remaining

    async def set_online(self, online: bool) -> None:
        was_online = self.is_online
        self.is_online = online
        if online and not was_online:
            logger.info("Connectivity restored, flushing outbox")
            await self.flush_outbox()
        elif not online and was_online:
            logger.info("Connectivity lost")

    async def probe(self) -> bool:
        online = await self.client.ping()
        await self.set_online(online)
        return online

    async def start(self) -> None:
        """Eager first check, covering transitions missed while not running."""
        was_online = self.is_online
        # An offline -> online transition already flushed inside probe()
        if await self.probe() and was_online:
            await self.flush_outbox()
