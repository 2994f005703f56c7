import functools
import inspect
import logging
import time
from typing import Any, Callable

from .logging import _redact

logger = logging.getLogger("steps")


def _preview(result: Any) -> str:
    if isinstance(result, (list, tuple)):
        return f"{type(result).__name__}[{len(result)}]"
    return str(result)[:200]


def log_step(step: str):
    """
    Logs entry, exit, timing and exceptions of a sync step.
    Example: @log_step("outbox.flush")
    """
    def _exit(t0: float, result: Any):
        dt = round((time.perf_counter() - t0) * 1000)
        logger.info("EXIT %s", step, extra={"extra": {"step": step, "elapsed_ms": dt, "result_preview": _preview(result)}})

    def _error(t0: float, exc: Exception):
        dt = round((time.perf_counter() - t0) * 1000)
        logger.error("ERROR %s: %s", step, exc, extra={"extra": {"step": step, "elapsed_ms": dt}}, exc_info=True)

    def decorator(fn: Callable):
        @functools.wraps(fn)
        async def awrapped(*args, **kwargs):
            t0 = time.perf_counter()
            logger.debug("ENTER %s", step, extra={"extra": {"step": step, "args": _redact(kwargs)}})
            try:
                result = await fn(*args, **kwargs)
            except Exception as e:
                _error(t0, e)
                raise
            _exit(t0, result)
            return result

        @functools.wraps(fn)
        def wrapped(*args, **kwargs):
            t0 = time.perf_counter()
            logger.debug("ENTER %s", step, extra={"extra": {"step": step, "args": _redact(kwargs)}})
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                _error(t0, e)
                raise
            _exit(t0, result)
            return result

        if inspect.iscoroutinefunction(fn):
            return awrapped
        return wrapped

    return decorator
