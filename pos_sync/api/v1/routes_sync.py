# pos_sync/api/v1/routes_sync.py
from typing import Dict

from fastapi import APIRouter, Depends

from pos_sync.api.v1.deps import get_sync_engine
from pos_sync.domain.sync.engine import SyncEngine
from pos_sync.domain.sync.schemas import ConnectivityIn, ReplayReportOut, SyncStatusOut


router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatusOut)
async def sync_status_endpoint(engine: SyncEngine = Depends(get_sync_engine)):
    return SyncStatusOut(**engine.status())


@router.post("/now", response_model=ReplayReportOut)
async def sync_now_endpoint(engine: SyncEngine = Depends(get_sync_engine)):
    report = await engine.sync_now()
    return ReplayReportOut.model_validate(report)


@router.post("/refresh", response_model=Dict[str, bool])
async def refresh_endpoint(scope_id: str, engine: SyncEngine = Depends(get_sync_engine)):
    results = await engine.refresh_all(scope_id)
    return {kind.value: ok for kind, ok in results.items()}


@router.post("/connectivity", response_model=SyncStatusOut)
async def connectivity_endpoint(
    payload: ConnectivityIn,
    engine: SyncEngine = Depends(get_sync_engine),
):
    # platform online/offline signal; going online starts a replay in the background
    engine.monitor.set_online(payload.online)
    return SyncStatusOut(**engine.status())
