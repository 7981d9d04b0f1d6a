"""FastAPI dependencies for the sync runtime."""

from fastapi import HTTPException, Request, status

from ecosync.bootstrap import SyncRuntime
from ecosync.services.network import NetworkMonitor
from ecosync.services.sync import SyncService


def get_runtime(request: Request) -> SyncRuntime:
    runtime = getattr(request.app.state, "sync_runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine is not running.",
        )
    return runtime


def get_sync_service(request: Request) -> SyncService:
    return get_runtime(request).service


def get_network_monitor(request: Request) -> NetworkMonitor:
    return get_runtime(request).monitor
