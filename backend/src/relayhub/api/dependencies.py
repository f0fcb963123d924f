from typing import Annotated

from fastapi import Depends, HTTPException, Request

from ..config import Settings
from ..core.logger import get_logger
from ..services import DeviceService, SchedulerService

logger = get_logger(__name__)


async def get_settings(request: Request) -> Settings:
    """Lấy cấu hình ứng dụng từ app state."""
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(
            status_code=503,
            detail="Settings not initialized",
        )
    return config


async def get_device_service(request: Request) -> DeviceService:
    """Lấy DeviceService đã khởi tạo trong lifespan."""
    device_service = getattr(request.app.state, "device_service", None)
    if device_service is None:
        raise HTTPException(
            status_code=503,
            detail="Device service not initialized",
        )
    return device_service


async def get_scheduler(request: Request) -> SchedulerService | None:
    return getattr(request.app.state, "scheduler_service", None)


async def get_owner_id(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Đọc owner-id từ header yêu cầu, fallback về client.owner_id trong config."""
    owner_id = request.headers.get("owner-id") or settings.client.owner_id
    if not owner_id:
        raise HTTPException(status_code=400, detail="Missing owner-id header")
    return owner_id
