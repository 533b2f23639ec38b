from fastapi import Request

from pos_sync.domain.sync.engine import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync.engine
