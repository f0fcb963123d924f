from fastapi import APIRouter

from .health import router as health_router
from .devices import router as devices_router
from .lifecycle import router as lifecycle_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(devices_router)
router.include_router(lifecycle_router)
