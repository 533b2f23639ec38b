# pos_sync/api/v1/routes_entities.py
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException

from pos_sync.api.v1.deps import get_sync_engine
from pos_sync.core.errors import EntityNotFoundError, EntityValidationError, RemoteTimeoutError
from pos_sync.domain.entities.schemas import EntityKind, dump_entity
from pos_sync.domain.sync.engine import SyncEngine
from pos_sync.domain.sync.schemas import MutationOut, MutationResult


router = APIRouter(prefix="/api/v1/entities", tags=["entities"])


def _mutation_out(engine: SyncEngine, result: MutationResult) -> MutationOut:
    if not result.ok:
        status = 504 if isinstance(result.error, RemoteTimeoutError) else 502
        raise HTTPException(status_code=status, detail=str(result.error))
    return MutationOut(
        entity=dump_entity(result.entity) if result.entity is not None else None,
        queued=result.queued,
        pending=engine.pending_count(),
        error=str(result.error) if result.error is not None else None,
    )


@router.get("/{kind}", response_model=List[Dict[str, Any]])
async def list_cached_endpoint(
    kind: EntityKind,
    scope_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
):
    return [dump_entity(e) for e in engine.get_cached(kind, scope_id)]


@router.post("/{kind}", response_model=MutationOut)
async def create_entity_endpoint(
    kind: EntityKind,
    scope_id: str,
    payload: Dict[str, Any] = Body(...),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        result = await engine.create_entity(kind, scope_id, payload)
    except EntityValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _mutation_out(engine, result)


@router.patch("/{kind}/{entity_id}", response_model=MutationOut)
async def update_entity_endpoint(
    kind: EntityKind,
    entity_id: str,
    payload: Dict[str, Any] = Body(...),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        result = await engine.update_entity(kind, entity_id, payload)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EntityValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _mutation_out(engine, result)


@router.delete("/{kind}/{entity_id}", response_model=MutationOut)
async def delete_entity_endpoint(
    kind: EntityKind,
    entity_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        result = await engine.delete_entity(kind, entity_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _mutation_out(engine, result)
