import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.db import SessionLocal, engine
from app.core.telemetry import setup_logging, setup_telemetry
from app.services.factory import build_sync_components


log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    components = build_sync_components(settings, SessionLocal)
    app.state.scheduler = components.scheduler
    if settings.scheduler_enabled:
        await components.scheduler.start()
    else:
        log.info("sync scheduler disabled; manual triggers only")
    try:
        yield
    finally:
        await components.aclose()
        await engine.dispose()


setup_logging()

app = FastAPI(title="MLS Sync", version="0.1.0", lifespan=lifespan)

setup_telemetry(app, engine)
app.include_router(v1_router)
