import logging

from fastapi import APIRouter, Depends, HTTPException

from fieldsync.api.deps import get_runtime
from fieldsync.schemas.outbox import OutboxEnqueueRequest, OutboxItem
from fieldsync.services.sync_runtime import SyncRuntime
from fieldsync.services.transport import InvalidOutboxKind

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_item(runtime: SyncRuntime, item_id: str) -> None:
    if runtime.outbox.get(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Outbox item {item_id} not found")


@router.get("/outbox", response_model=list[OutboxItem], summary="List queued submissions")
async def list_outbox(runtime: SyncRuntime = Depends(get_runtime)):
    return runtime.outbox.list_items()


@router.post("/outbox", response_model=OutboxItem, status_code=202, summary="Queue a submission")
async def enqueue(body: OutboxEnqueueRequest, runtime: SyncRuntime = Depends(get_runtime)):
    """
    Queues an RDO, OS or FIN submission for delivery.

    The answer is `202 Accepted`: delivery happens on the next flush. Sending
    the same `client_id` again returns the already queued item.
    """
    try:
        return runtime.outbox.enqueue(
            body.kind, body.employee_id, body.payload, body.client_filled_at, body.client_id
        )
    except InvalidOutboxKind as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/outbox/flush", response_model=list[OutboxItem], summary="Deliver due submissions now")
async def flush(runtime: SyncRuntime = Depends(get_runtime)):
    remaining = await runtime.connectivity.flush_outbox()
    return runtime.outbox.list_items() if remaining is None else remaining


@router.post("/outbox/{item_id}/retry", response_model=list[OutboxItem], summary="Retry a submission now")
async def retry(item_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    _require_item(runtime, item_id)
    return runtime.outbox.retry(item_id)


@router.delete("/outbox/{item_id}", response_model=list[OutboxItem], summary="Cancel a submission")
async def remove(item_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    _require_item(runtime, item_id)
    logger.info("Outbox item cancelled", extra={"extra": {"item_id": item_id}})
    return runtime.outbox.remove(item_id)
