from fastapi import APIRouter, Depends

from ...core.logger import SERVER_VERSION
from ...schemas.base import HealthResponse
from ..dependencies import get_scheduler

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(scheduler=Depends(get_scheduler)) -> HealthResponse:
    running = bool(scheduler and scheduler.is_running)
    return HealthResponse(
        status="ok",
        version=SERVER_VERSION,
        message="scheduler running" if running else "scheduler stopped",
    )
