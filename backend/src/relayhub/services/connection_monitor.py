"""
ConnectionMonitor - phân loại khả năng kết nối của từng thiết bị.

Mỗi thiết bị được probe lần lượt qua danh sách endpoint; endpoint đầu tiên
trả lời -> Connected, tất cả thất bại -> Not Connected. Registry chỉ được ghi
khi phân loại thay đổi.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from ..config.settings import MonitorSettings
from ..core.enums import DeviceStatus
from ..core.exceptions import RegistryError
from ..core.logger import get_logger
from ..core.utils.network import host_url
from ..core.utils.timezone import iso_now
from ..schemas.device import DeviceRecord
from .device_control import DeviceControl
from .http_probe import HttpProbe
from .registry_client import BaseRegistryClient
from .subnet_scanner import SubnetScanner

logger = get_logger(__name__)

# (record_id, status, ip_address, stored document trả về từ registry hoặc None)
StatusListener = Callable[[str, DeviceStatus, Optional[str], Optional[dict]], Awaitable[None]]


class ConnectionMonitor:
    """Theo dõi trạng thái kết nối và phát hiện thiết bị đổi IP sau khi khởi động lại."""

    def __init__(
        self,
        probe: HttpProbe,
        registry: BaseRegistryClient,
        scanner: Optional[SubnetScanner] = None,
        settings: MonitorSettings | None = None,
        mqtt_service=None,
        control: Optional[DeviceControl] = None,
    ):
        self.probe = probe
        self.registry = registry
        self.scanner = scanner
        self.settings = settings or MonitorSettings()
        self.mqtt_service = mqtt_service
        self.control = control
        self._written: Dict[str, DeviceStatus] = {}
        self._observed: Dict[str, DeviceStatus] = {}
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def forget(self, record_id: str) -> None:
        self._written.pop(record_id, None)
        self._observed.pop(record_id, None)

    async def check_device(self, record: DeviceRecord) -> DeviceStatus:
        """Probe tuần tự các endpoint, dừng ở endpoint đầu tiên trả lời."""
        if not record.ip_address:
            return DeviceStatus.not_connected

        for path in self.settings.status_endpoints:
            result = await self.probe.get(
                host_url(record.ip_address, path),
                timeout=self.settings.endpoint_timeout,
            )
            if result.answered:
                logger.debug(f"{record.id} trả lời tại {path} ({result.describe()})")
                return DeviceStatus.connected
        return DeviceStatus.not_connected

    async def _notify(
        self, record: DeviceRecord, status: DeviceStatus, stored: Optional[dict]
    ) -> None:
        for listener in self._listeners:
            await listener(record.id, status, record.ip_address, stored)

        if self.mqtt_service and self.mqtt_service.is_available():
            await self.mqtt_service.publish_device_event(
                record.device_id,
                "status",
                {
                    "recordId": record.id,
                    "status": status.value,
                    "ipAddress": record.ip_address,
                    "timestamp": iso_now(),
                },
            )

    async def _check_and_record(self, record: DeviceRecord) -> DeviceStatus:
        status = await self.check_device(record)
        observed = self._observed.get(record.id, record.status)
        self._observed[record.id] = status
        # So với trạng thái đã ghi thành công; ghi lỗi thì lần kiểm tra sau ghi lại
        written = self._written.get(record.id, record.status)
        if status == written:
            if status != observed:
                await self._notify(record, status, None)
            return status

        if status != observed:
            logger.info(f"{record.site_name or record.id}: {observed.value} -> {status.value}")
        stored = None
        try:
            stored = await self.registry.update(record.id, {"status": status.value})
            self._written[record.id] = status
        except RegistryError as e:
            logger.warning(f"Không ghi được trạng thái {record.id} lên registry: {e.message}")
        if status != observed or stored is not None:
            await self._notify(record, status, stored)
        return status

    async def check_all(self, records: Iterable[DeviceRecord]) -> Dict[str, DeviceStatus]:
        """Kiểm tra đồng thời và độc lập mọi thiết bị."""
        records = list(records)
        if not records:
            return {}
        results = await asyncio.gather(
            *(self._check_and_record(record) for record in records), return_exceptions=True
        )
        statuses: Dict[str, DeviceStatus] = {}
        for record, result in zip(records, results):
            if isinstance(result, Exception):
                logger.error(f"Kiểm tra kết nối {record.id} lỗi: {result}")
                continue
            statuses[record.id] = result
        return statuses

    async def detect_restarted(
        self, records: Iterable[DeviceRecord], local_ip: str
    ) -> List[DeviceRecord]:
        """Quét toàn subnet, mỗi thiết bị tìm thấy khớp record (MAC/deviceId) nhưng
        khác IP thì cập nhật ipAddress + status và khôi phục trạng thái relay đã biết."""
        if self.scanner is None:
            return []

        found = await self.scanner.scan_all_identities(local_ip)
        if not found:
            return []

        updated: List[DeviceRecord] = []
        for record in records:
            host = next(
                (h for h, identity in found if identity.matches(record.device_id, record.mac_address)),
                None,
            )
            if host is None or record.ip_address == host:
                continue
            logger.info(f"{record.id}: IP đổi {record.ip_address} -> {host}")
            patch = {"ipAddress": host, "status": DeviceStatus.connected.value}
            stored = None
            try:
                stored = await self.registry.update(record.id, patch)
                self._written[record.id] = DeviceStatus.connected
            except RegistryError as e:
                logger.warning(f"Không cập nhật được IP mới cho {record.id}: {e.message}")
            record = record.model_copy(
                update={"ip_address": host, "status": DeviceStatus.connected}
            )
            self._observed[record.id] = DeviceStatus.connected
            if self.control is not None:
                restored = await self.control.restore_components(host, record.components)
                logger.info(f"{record.id}: khôi phục relay {restored}")
            await self._notify(record, DeviceStatus.connected, stored)
            updated.append(record)
        return updated
