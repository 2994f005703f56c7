from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NotificationItem(BaseModel):
    # The feed speaks camelCase; local state is stored in snake_case
    model_config = ConfigDict(populate_by_name=True)

    # Numeric ids from the feed; older records may carry string ids
    id: int | str
    employee_id: str | int | None = Field(default=None, alias="employeeId")
    title: str | None = ""
    message: str | None = ""
    created_at: datetime = Field(alias="createdAt")
    read_at: datetime | None = Field(default=None, alias="readAt")


class NotificationsState(BaseModel):
    items: list[NotificationItem] = Field(default_factory=list)
    since: str | None = None


class MarkReadRequest(BaseModel):
    ids: list[int | str]
