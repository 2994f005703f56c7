from typing import Any, Awaitable, Callable, Dict, Protocol

from fieldsync.integrations.logistics_client import LogisticsApiClient
from fieldsync.schemas.outbox import OutboxItem, OutboxKind


class InvalidOutboxKind(ValueError):
    """Raised for a submission kind the logistics API has no operation for."""

    def __init__(self, kind: Any):
        super().__init__(f"Invalid outbox kind: {kind}")
        self.kind = kind


def parse_kind(kind: Any) -> OutboxKind:
    try:
        return OutboxKind(kind)
    except ValueError:
        raise InvalidOutboxKind(kind) from None


class Transport(Protocol):
    async def send(self, item: OutboxItem) -> Any: ...


class OutboxTransport:
    """Delivers outbox items through the logistics API, dispatching by kind."""

    def __init__(self, client: LogisticsApiClient):
        self.client = client
        self.operations: Dict[OutboxKind, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            OutboxKind.RDO: client.create_daily_report,
            OutboxKind.OS: client.create_service_order,
            OutboxKind.FIN: client.create_financial_request,
        }

    async def send(self, item: OutboxItem) -> Any:
        operation = self.operations.get(item.kind)
        if operation is None:
            raise InvalidOutboxKind(item.kind)
        return await operation(item.payload)
