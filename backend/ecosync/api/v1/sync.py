"""Local sync status endpoints for the app UI: pending changes, Sync Now, conflicts."""

from typing import Annotated

from fastapi import APIRouter, Depends

from ecosync.core.deps import get_network_monitor, get_sync_service
from ecosync.models.enums import SyncTrigger
from ecosync.schemas import APIResponse
from ecosync.schemas.sync import ConflictResolveRequest, NetworkReportRequest
from ecosync.services.network import NetworkMonitor
from ecosync.services.sync import SyncService

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=APIResponse)
async def sync_status(
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Aggregate status for the UI: online/offline/syncing and N pending changes."""
    stats = await svc.get_sync_stats()
    return {"success": True, "data": stats.model_dump(mode="json")}


@router.get("/queue", response_model=APIResponse)
async def list_queue(
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Pending operations in replay order (oldest first)."""
    return {
        "success": True,
        "data": [op.model_dump(mode="json") for op in svc.pending_operations()],
    }


@router.post("/trigger", response_model=APIResponse)
async def trigger_sync(
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Sync Now: drain the queue immediately instead of waiting for the next pass."""
    started = await svc.trigger_sync(SyncTrigger.MANUAL)
    stats = await svc.get_sync_stats()
    return {
        "success": True,
        "data": {"started": started, "stats": stats.model_dump(mode="json")},
    }


@router.post("/network", response_model=APIResponse)
async def report_network(
    data: NetworkReportRequest,
    monitor: Annotated[NetworkMonitor, Depends(get_network_monitor)],
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Connectivity push from the platform bridge."""
    await monitor.report(data.online)
    return {"success": True, "data": {"online": monitor.is_online(), "status": svc.status.value}}


@router.get("/failed", response_model=APIResponse)
async def list_failed(
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Operations that exhausted their retries or failed permanently."""
    return {
        "success": True,
        "data": [op.model_dump(mode="json") for op in svc.failed_operations()],
    }


@router.post("/failed/{operation_id}/retry", response_model=APIResponse)
async def retry_failed(
    operation_id: str,
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    op = await svc.retry_failed_operation(operation_id)
    return {"success": True, "data": op.model_dump(mode="json")}


@router.delete("/failed/{operation_id}", response_model=APIResponse)
async def discard_failed(
    operation_id: str,
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    op = await svc.discard_failed_operation(operation_id)
    return {"success": True, "data": op.model_dump(mode="json")}


@router.get("/conflicts", response_model=APIResponse)
async def list_conflicts(
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    """Conflicts waiting for the user to choose a side."""
    return {
        "success": True,
        "data": [c.model_dump(mode="json") for c in svc.pending_conflicts()],
    }


@router.post("/conflicts/{conflict_id}/resolve", response_model=APIResponse)
async def resolve_conflict(
    conflict_id: str,
    data: ConflictResolveRequest,
    svc: Annotated[SyncService, Depends(get_sync_service)],
):
    conflict = await svc.resolve_pending_conflict(conflict_id, data.keep)
    return {"success": True, "data": conflict.model_dump(mode="json")}
