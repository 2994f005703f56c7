import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fieldsync.core.config import settings
from fieldsync.core.logging import configure_logging, set_request_id, set_run_id
from fieldsync.api.v1.endpoints import connectivity, notifications, outbox
from fieldsync.background.jobs import build_scheduler
from fieldsync.services.sync_runtime import SyncRuntime

# Initialize logging before anything else
configure_logging()
set_run_id()  # Unique run ID for this application instance

logger = logging.getLogger(__name__)

HEALTH_KEY = "health_check"


def create_app(runtime: SyncRuntime | None = None, start_background: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.runtime is None:
            app.state.runtime = SyncRuntime.from_settings()
        scheduler = None
        if start_background:
            logger.info("Starting scheduler...")
            scheduler = build_scheduler(app.state.runtime)
            scheduler.start()
            await app.state.runtime.connectivity.start()
            if app.state.runtime.notifications is not None:
                await app.state.runtime.notifications.poll()
        try:
            yield
        finally:
            if scheduler is not None:
                logger.info("Shutting down scheduler...")
                scheduler.shutdown(wait=False)
            await app.state.runtime.close()

    app = FastAPI(title=settings.PROJECT_NAME, version="1.0.0", lifespan=lifespan)
    app.state.runtime = runtime

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID") or str(uuid4()))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/", tags=["Health Check"])
    def read_root():
        return {"status": "ok", "project_name": settings.PROJECT_NAME}

    @app.get("/health/store", tags=["Health Check"])
    def health_store(request: Request):
        """Round-trips a value through the local document store."""
        store = request.app.state.runtime.store
        token = str(uuid4())
        store.set(HEALTH_KEY, token)
        if store.get(HEALTH_KEY) != token:
            raise HTTPException(status_code=503, detail={"store": "error"})
        return {"store": "ok"}

    app.include_router(outbox.router, prefix="/api/v1", tags=["Outbox"])
    app.include_router(notifications.router, prefix="/api/v1", tags=["Notifications"])
    app.include_router(connectivity.router, prefix="/api/v1", tags=["Connectivity"])
    return app


app = create_app()
