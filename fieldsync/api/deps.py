from fastapi import HTTPException, Request

from fieldsync.services.notification_service import NotificationService
from fieldsync.services.sync_runtime import SyncRuntime


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def get_notifications(request: Request) -> NotificationService:
    runtime = get_runtime(request)
    if runtime.notifications is None:
        raise HTTPException(status_code=409, detail="No employee is bound to this device (EMPLOYEE_ID).")
    return runtime.notifications
