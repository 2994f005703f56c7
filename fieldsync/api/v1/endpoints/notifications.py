from fastapi import APIRouter, Depends

from fieldsync.api.deps import get_notifications
from fieldsync.schemas.notifications import MarkReadRequest
from fieldsync.services.notification_service import NotificationService

router = APIRouter()


def _view(service: NotificationService) -> dict:
    return {
        "items": [item.model_dump(mode="json") for item in service.items],
        "unread_count": service.unread_count,
        "toast": service.toast,
        "since": service.since,
    }


@router.get("/notifications", summary="Local notification list")
async def list_notifications(service: NotificationService = Depends(get_notifications)):
    return _view(service)


@router.post("/notifications/poll", summary="Poll the feed now")
async def poll(service: NotificationService = Depends(get_notifications)):
    await service.poll()
    return _view(service)


@router.post("/notifications/read", summary="Mark notifications as read")
async def mark_read(body: MarkReadRequest, service: NotificationService = Depends(get_notifications)):
    await service.mark_read(body.ids)
    return _view(service)
