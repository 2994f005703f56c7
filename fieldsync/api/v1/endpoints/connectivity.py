from fastapi import APIRouter, Depends

from fieldsync.api.deps import get_runtime
from fieldsync.schemas.connectivity import ConnectivityUpdate
from fieldsync.services.sync_runtime import SyncRuntime

router = APIRouter()


@router.get("/connectivity", summary="Current connectivity state")
async def status(runtime: SyncRuntime = Depends(get_runtime)):
    return {"online": runtime.connectivity.is_online, "pending": len(runtime.outbox.list_items())}


@router.post("/connectivity", summary="Report an online/offline transition")
async def update(body: ConnectivityUpdate, runtime: SyncRuntime = Depends(get_runtime)):
    """Called by the host shell on network change events; going online drains the outbox."""
    await runtime.connectivity.set_online(body.online)
    return {"online": runtime.connectivity.is_online, "pending": len(runtime.outbox.list_items())}
