"""Lifecycle API - UI báo các cạnh vòng đời ứng dụng.

- foreground / focus: kiểm tra kết nối ngay thay vì chờ chu kỳ kế tiếp
- background: flush state lên registry, bỏ qua write gate
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Path

from ...core.enums import LifecycleEvent
from ...schemas.base import SuccessResponse
from ...services import DeviceService
from ..dependencies import get_device_service

router = APIRouter(prefix="/lifecycle", tags=["lifecycle"])


@router.post("/{event}", response_model=SuccessResponse[Dict[str, Any]])
async def lifecycle_event(
    event: Annotated[LifecycleEvent, Path(description="foreground | focus | background")],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[Dict[str, Any]]:
    summary = await service.handle_lifecycle(event)
    return SuccessResponse(data=summary)
