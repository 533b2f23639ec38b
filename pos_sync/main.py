from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from pos_sync.api.v1.routes_entities import router as entities_router
from pos_sync.api.v1.routes_sync import router as sync_router
from pos_sync.core.config import Settings, settings as default_settings
from pos_sync.core.logging import setup_logging
from pos_sync.domain.sync.bootstrap import start_sync_runtime


def create_app(settings: Optional[Settings] = None, remote=None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        app.state.sync = await start_sync_runtime(settings, remote=remote)
        try:
            yield
        finally:
            await app.state.sync.close()

    app = FastAPI(lifespan=lifespan)

    app.include_router(sync_router)
    app.include_router(entities_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
