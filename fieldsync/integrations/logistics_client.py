from typing import Any, Dict, List

import httpx

from .base_client import ApiError, BaseApiClient
from fieldsync.core.config import settings


class LogisticsApiClient(BaseApiClient):
    """Client for the logistics REST API used by the field app."""

    def __init__(self, base_url: str | None = None, token: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            base_url=(base_url or settings.API_BASE_URL).rstrip("/"),
            timeout=settings.API_TIMEOUT_SECONDS,
            tries=settings.HTTP_RETRY_ATTEMPTS,
            transport=transport,
        )
        token = token if token is not None else settings.API_TOKEN
        if token:
            self.client.headers["Authorization"] = f"Bearer {token}"

    async def create_daily_report(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Creates an RDO (daily report)."""
        return await self._request("POST", "/api/requests/rdo", json=payload)

    async def create_service_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Creates an OS (service order)."""
        return await self._request("POST", "/api/requests/os", json=payload)

    async def create_financial_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/requests/finance", json=payload)

    async def list_notifications(self, employee_id: str, since: str | None = None) -> List[Dict[str, Any]]:
        params = {"since": since} if since else None
        data = await self._request("GET", f"/api/employees/{employee_id}/notifications", params=params)
        # The feed answers either a bare list or {"items": [...]}
        if isinstance(data, dict):
            data = data.get("items") or []
        return data if isinstance(data, list) else []

    async def mark_notifications_read(self, employee_id: str, ids: List[int]) -> Dict[str, Any]:
        return await self._request("POST", f"/api/employees/{employee_id}/notifications/read", json={"ids": ids})

    async def ping(self) -> bool:
        """Cheap reachability check used by the connectivity probe."""
        try:
            await self._request("GET", "/health", tries=1)
        except ApiError as e:
            # Any HTTP answer means the server is reachable
            return e.status is not None
        return True
