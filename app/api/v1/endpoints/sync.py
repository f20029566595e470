import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.schemas.sync import SyncRunOut, SyncStatusResponse, TriggerSyncResponse
from app.services.errors import StorageError
from app.services.scheduler import SyncScheduler


log = logging.getLogger(__name__)

router = APIRouter()


def get_scheduler(request: Request) -> SyncScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync scheduler not initialised")
    return scheduler


@router.post("/sync/trigger", response_model=TriggerSyncResponse)
async def trigger_sync(scheduler: SyncScheduler = Depends(get_scheduler)) -> TriggerSyncResponse:
    result = await scheduler.trigger_manual_sync()

    if result.status == "already_running":
        raise HTTPException(status_code=409, detail={"status": "already_running"})
    if result.status == "stopped" or result.run is None:
        raise HTTPException(status_code=503, detail={"status": "stopped"})

    return TriggerSyncResponse(
        status=result.status,
        run_id=result.run.id,
        outcome=result.run.outcome,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        failed=result.failed,
        duration_seconds=result.duration,
    )


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(scheduler: SyncScheduler = Depends(get_scheduler)) -> SyncStatusResponse:
    listings_total: int | None
    try:
        listings_total = await scheduler.store.count_listings()
    except StorageError as e:
        log.warning("listing count unavailable: %s", e)
        listings_total = None

    last = scheduler.last_run
    return SyncStatusResponse(
        state=scheduler.state,
        last_sync_time=await scheduler.get_last_sync_time(),
        listings_total=listings_total,
        last_run=SyncRunOut(**last.as_dict()) if last else None,
    )


@router.get("/sync/runs", response_model=list[SyncRunOut])
async def list_sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    scheduler: SyncScheduler = Depends(get_scheduler),
) -> list[SyncRunOut]:
    try:
        rows = await scheduler.store.recent_sync_runs(limit)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [SyncRunOut(**r) for r in rows]
