from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OutboxKind(str, Enum):
    RDO = "RDO"  # daily report
    OS = "OS"  # service order
    FIN = "FIN"  # financial request


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENDING = "SENDING"
    FAILED = "FAILED"


class OutboxItem(BaseModel):
    """
    A submission waiting for delivery to the logistics API.

    There is no success status: a delivered item is removed from the queue.
    """
    id: str
    kind: OutboxKind
    employee_id: str
    payload: dict[str, Any]
    client_id: str
    client_filled_at: datetime | None = None
    created_at: datetime
    status: OutboxStatus = OutboxStatus.PENDING
    sending_at: datetime | None = None
    attempts: int = 0
    last_error: str = ""
    next_retry_at: datetime | None = None


class OutboxEnqueueRequest(BaseModel):
    kind: str
    employee_id: str | int
    payload: dict[str, Any] = Field(default_factory=dict)
    client_filled_at: datetime | None = None
    client_id: str | None = None
