from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.sync import router as sync_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(sync_router, tags=["sync"])
