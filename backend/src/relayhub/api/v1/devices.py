"""Devices API Router - control plane mỏng trên DeviceService.

Endpoints:
1. GET /v1/devices - Danh sách thiết bị của owner (đã lọc trùng)
2. POST /v1/devices/provision - Provision thiết bị mới qua AP của nó
3. POST /v1/devices/register - Đăng ký thiết bị đã có trên mạng
4. PATCH /v1/devices/{record_id} - Đổi tên site
5. DELETE /v1/devices/{record_id} - Xóa (registry best-effort, local luôn xóa)
6. POST /v1/devices/{record_id}/components/{name} - Bật/tắt actuator
7. POST /v1/devices/{record_id}/sync - Chạy một chu kỳ đồng bộ ngay
8. POST /v1/devices/rediscover - Tìm lại thiết bị đổi IP

Service trả về OperationResult; chỉ lớp API ánh xạ lỗi sang HTTP status.
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Path, Query

from ...core.exceptions.http_exceptions import exception_for
from ...core.logger import get_logger
from ...schemas.base import ListResponse, OperationResult, SuccessResponse
from ...schemas.device import (
    ComponentToggle,
    DeviceRecord,
    DeviceRename,
    ProvisioningRequest,
    RegisterDeviceRequest,
)
from ...services import DeviceService
from ..dependencies import get_device_service, get_owner_id

logger = get_logger(__name__)

router = APIRouter(prefix="/devices", tags=["devices"])


def _unwrap(result: OperationResult) -> Any:
    if not result.success:
        raise exception_for(result.error_kind, result.message)
    return result.data


@router.get("", response_model=ListResponse[DeviceRecord])
async def list_devices(
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
    refresh: Annotated[bool, Query(description="Đọc lại từ registry")] = False,
) -> ListResponse[DeviceRecord]:
    devices = await service.list_devices(owner_id, refresh=refresh)
    return ListResponse(data=devices, total=len(devices))


@router.post("/provision", response_model=SuccessResponse[DeviceRecord], status_code=201)
async def provision_device(
    body: ProvisioningRequest,
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[DeviceRecord]:
    """
    Provision thiết bị mới.

    Body:
    - site_name: tên hiển thị
    - ap_ssid: SSID của AP mở trên thiết bị
    - target_ssid / target_password: mạng Wi-Fi đích

    Status Codes:
    - 201: Created (thiết bị đã được xác minh trực tiếp trước khi ghi registry)
    - 404: Không tìm thấy thiết bị
    - 409: Đang có provisioning khác
    - 422: Thiết bị từ chối cấu hình / không xác minh được
    - 503: Registry không khả dụng
    """
    result = await service.provision(owner_id, body)
    return SuccessResponse(data=_unwrap(result), message=result.message)


@router.post("/register", response_model=SuccessResponse[DeviceRecord], status_code=201)
async def register_device(
    body: RegisterDeviceRequest,
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[DeviceRecord]:
    result = await service.register(body.owner_id or owner_id, body.site_name, body.ip_address)
    return SuccessResponse(data=_unwrap(result), message=result.message)


@router.post("/rediscover", response_model=ListResponse[DeviceRecord])
async def rediscover_devices(
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> ListResponse[DeviceRecord]:
    result = await service.rediscover(owner_id)
    devices = _unwrap(result)
    return ListResponse(data=devices, total=len(devices), message=result.message)


@router.patch("/{record_id}", response_model=SuccessResponse[DeviceRecord])
async def rename_device(
    record_id: Annotated[str, Path(description="Record ID")],
    body: DeviceRename,
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[DeviceRecord]:
    result = await service.rename(owner_id, record_id, body.site_name)
    return SuccessResponse(data=_unwrap(result), message=result.message)


@router.delete("/{record_id}", response_model=SuccessResponse[Dict[str, Any]])
async def delete_device(
    record_id: Annotated[str, Path(description="Record ID")],
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[Dict[str, Any]]:
    result = await service.delete(owner_id, record_id)
    return SuccessResponse(data=_unwrap(result), message=result.message)


@router.post(
    "/{record_id}/components/{name}", response_model=SuccessResponse[DeviceRecord]
)
async def toggle_component(
    record_id: Annotated[str, Path(description="Record ID")],
    name: Annotated[str, Path(description="pump | heater | auger | highWater")],
    body: ComponentToggle,
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[DeviceRecord]:
    result = await service.toggle_component(owner_id, record_id, name, body.on)
    return SuccessResponse(data=_unwrap(result))


@router.post("/{record_id}/sync", response_model=SuccessResponse[DeviceRecord])
async def sync_device(
    record_id: Annotated[str, Path(description="Record ID")],
    owner_id: Annotated[str, Depends(get_owner_id)],
    service: Annotated[DeviceService, Depends(get_device_service)],
) -> SuccessResponse[DeviceRecord]:
    result = await service.sync_now(owner_id, record_id)
    return SuccessResponse(data=_unwrap(result))
