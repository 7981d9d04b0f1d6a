import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ecosync.api.v1 import api_router
from ecosync.bootstrap import SyncRuntime, build_sync_runtime
from ecosync.config import settings
from ecosync.core.error_handlers import register_error_handlers

logger = logging.getLogger(__name__)


def create_app(runtime: SyncRuntime | None = None) -> FastAPI:
    """Build the status API. Pass a prepared runtime to skip building one from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        sync_runtime = runtime or await build_sync_runtime(settings)
        await sync_runtime.start()
        app.state.sync_runtime = sync_runtime
        yield
        # Shutdown: stop background tasks and release the store
        app.state.sync_runtime = None
        await sync_runtime.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # --- Error handlers ---
    register_error_handlers(app)

    # --- Routes ---
    app.include_router(api_router)

    @app.get("/api/health")
    async def health_check():
        """Liveness plus a store round-trip and the current sync status."""
        from fastapi.responses import JSONResponse

        checks: dict = {"version": settings.APP_VERSION}
        healthy = True
        sync_runtime = getattr(app.state, "sync_runtime", None)

        if sync_runtime is None:
            healthy = False
            checks["sync"] = {"status": "error", "detail": "not started"}
        else:
            try:
                await sync_runtime.store.get("ecosync:health")
                checks["store"] = {
                    "status": "ok",
                    "backend": type(sync_runtime.store).__name__,
                    "durable": getattr(sync_runtime.store, "durable", False),
                }
            except Exception as exc:
                healthy = False
                checks["store"] = {"status": "error", "detail": str(exc)[:200]}
            checks["sync"] = {
                "status": sync_runtime.service.status.value,
                "pending": len(sync_runtime.service.pending_operations()),
            }

        checks["status"] = "healthy" if healthy else "degraded"
        return JSONResponse(content=checks, status_code=200 if healthy else 503)

    return app


app = create_app()
