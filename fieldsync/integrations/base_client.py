import hashlib
import httpx
import logging
import os
import time
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception

from fieldsync.core.logging import _redact


class ApiError(Exception):
    """
    Failure of a call to the logistics API.

    `status` carries the HTTP status code when the server answered,
    and is None for network level failures (offline, timeout, DNS).
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def is_conflict(self) -> bool:
        return self.status == 409


def is_retryable_exception(exception: BaseException) -> bool:
    """Decides whether a single request is worth repeating right away."""
    if isinstance(exception, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        # Only server side errors (5xx)
        return 500 <= exception.response.status_code < 600
    return False


def _to_api_error(exc: Exception) -> ApiError:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ApiError(f"API request failed ({status}).", status=status)
    return ApiError(str(exc) or exc.__class__.__name__)


LOG_BODY_MAX = int(os.getenv("LOG_BODY_MAX", "2000"))

class BaseApiClient:
    retry_wait = wait_exponential(multiplier=1, min=1, max=30)

    def __init__(self, base_url: str, timeout: float = 30.0, tries: int = 2,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.tries = max(1, tries)
        self._logger = logging.getLogger("http")

    def _maybe_hash(self, body: str) -> str:
        return hashlib.sha256(body.encode("utf-8", "ignore")).hexdigest()[:16]

    async def _send(self, method: str, url: str, attempt: int, t0: float, **kwargs):
        req_body = kwargs.get("content") or kwargs.get("data") or (kwargs.get("json") and str(kwargs["json"])) or ""
        headers = _redact(dict(kwargs.get("headers") or {}))

        self._logger.debug("HTTP %s %s (attempt %d)", method, url, attempt,
                           extra={"extra": {"method": method, "url": url, "attempt": attempt,
                                            "headers": headers, "body_preview": str(req_body)[:LOG_BODY_MAX]}})

        response: httpx.Response = await self.client.request(method, url, **kwargs)
        dt = round((time.perf_counter() - t0) * 1000)

        body_text = response.text or ""
        body_hash = self._maybe_hash(body_text)
        # Read at call time so tests and operators can flip it without a restart
        if float(os.getenv("LOG_SAMPLE_RATE", "1.0")) >= 1.0:
            body_preview = body_text[:LOG_BODY_MAX]
        else:
            body_preview = f"[sampled hash:{body_hash}]"

        self._logger.info("HTTP %s %s -> %d in %dms", method, url, response.status_code, dt,
                          extra={"extra": {"method": method, "url": url, "status_code": response.status_code,
                                           "elapsed_ms": dt, "response_preview": body_preview,
                                           "response_hash": body_hash}})

        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"{method} {url} -> {response.status_code}", request=response.request, response=response
            )
        return self._parse_response(response)

    async def _request(self, method: str, url: str, tries: int | None = None, **kwargs):
        """Performs a request with short in-place retries; failures surface as ApiError."""
        tries = tries or self.tries
        t0 = time.perf_counter()
        attempt = 0
        try:
            async for attempt_ctx in AsyncRetrying(
                stop=stop_after_attempt(tries),
                wait=self.retry_wait,
                retry=retry_if_exception(is_retryable_exception),
                reraise=True,
            ):
                with attempt_ctx:
                    attempt = attempt_ctx.retry_state.attempt_number
                    return await self._send(method, url, attempt, t0, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            dt = round((time.perf_counter() - t0) * 1000)
            self._logger.error("HTTP FAIL %s %s after %d tries: %s", method, url, attempt, repr(e),
                               extra={"extra": {"method": method, "url": url, "elapsed_ms": dt,
                                                "attempts": attempt}})
            raise _to_api_error(e) from e

    def _parse_response(self, response: httpx.Response):
        """Parses the body, tolerating empty and non-JSON answers."""
        if response.status_code == 204 or not response.content:
            return {}

        content_type = response.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return {}
        return {}

    async def close(self):
        await self.client.aclose()
