"""
DeviceService - facade cấp "site" cho API và scheduler.

Gom các thao tác người dùng (liệt kê, đổi tên, xóa, bật/tắt actuator,
rediscovery) và các trigger nền (monitor, sync, lifecycle) trên cùng state
in-memory của StateSyncEngine.
"""

from typing import Any, Dict, List, Optional, Set

from ..core.enums import ErrorKind, LifecycleEvent
from ..core.exceptions import RegistryError, RegistryNotFoundError
from ..core.logger import get_logger
from ..core.utils.cache import BaseCacheManager
from ..core.utils.timezone import iso_now
from ..schemas.base import OperationResult
from ..schemas.device import DeviceRecord, ProvisioningRequest
from .connection_monitor import ConnectionMonitor
from .http_probe import HttpProbe
from .provisioning_service import ProvisioningOrchestrator
from .registry_client import BaseRegistryClient
from .state_sync import StateSyncEngine
from .wifi_manager import BaseWifiManager

logger = get_logger(__name__)


def _hardware_key(record: DeviceRecord) -> str:
    mac = (record.mac_address or "").replace(":", "").lower()
    if mac and mac != "n/a":
        return f"mac:{mac}"
    return f"id:{record.device_id}"


def dedupe_records(records: List[DeviceRecord]) -> List[DeviceRecord]:
    """Lọc trùng khi đọc: một record cho mỗi phần cứng (MAC hoặc deviceId),
    giữ record có updatedAt mới nhất. Record không có deviceId bị bỏ."""
    latest: Dict[str, DeviceRecord] = {}
    for record in records:
        if not record.device_id:
            logger.warning(f"Bỏ record không có định danh phần cứng: {record.id}")
            continue
        key = _hardware_key(record)
        current = latest.get(key)
        if current is None:
            latest[key] = record
            continue
        logger.warning(f"Record trùng phần cứng: {current.id} và {record.id}")
        if (record.updated_at or record.created_at or "") > (
            current.updated_at or current.created_at or ""
        ):
            latest[key] = record
    return sorted(latest.values(), key=lambda r: r.created_at or "")


class DeviceService:
    """Facade thao tác thiết bị theo owner."""

    def __init__(
        self,
        registry: BaseRegistryClient,
        sync: StateSyncEngine,
        monitor: ConnectionMonitor,
        orchestrator: ProvisioningOrchestrator,
        wifi: BaseWifiManager,
        probe: Optional[HttpProbe] = None,
        cache: Optional[BaseCacheManager] = None,
    ):
        self.registry = registry
        self.probe = probe
        self.cache = cache
        self.sync = sync
        self.monitor = monitor
        self.orchestrator = orchestrator
        self.wifi = wifi
        self._loaded_owners: Set[str] = set()
        self.monitor.add_listener(self._on_status_change)

    async def _on_status_change(self, record_id, status, ip_address, stored) -> None:
        await self.sync.apply_remote(record_id, status=status, ip_address=ip_address, stored=stored)

    def _owned(self, owner_id: str, record_id: str) -> Optional[DeviceRecord]:
        record = self.sync.get(record_id)
        if record is None or record.owner_id != owner_id:
            return None
        return record

    # ==================== Read ====================

    async def load(self, owner_id: str, refresh: bool = False) -> List[DeviceRecord]:
        if refresh or owner_id not in self._loaded_owners:
            await self.sync.load(owner_id)
            self._loaded_owners.add(owner_id)
        return self.sync.for_owner(owner_id)

    async def list_devices(self, owner_id: str, refresh: bool = False) -> List[DeviceRecord]:
        return dedupe_records(await self.load(owner_id, refresh=refresh))

    # ==================== Provisioning ====================

    async def provision(
        self, owner_id: str, request: ProvisioningRequest
    ) -> OperationResult[DeviceRecord]:
        await self.load(owner_id)
        result = await self.orchestrator.provision(request, owner_id=owner_id)
        if result.success:
            await self.sync.upsert(result.data)
        return result

    async def register(
        self, owner_id: str, site_name: str, ip_address: Optional[str] = None
    ) -> OperationResult[DeviceRecord]:
        await self.load(owner_id)
        result = await self.orchestrator.register_existing(owner_id, site_name, ip_address)
        if result.success:
            await self.sync.upsert(result.data)
        return result

    # ==================== Mutations ====================

    async def rename(
        self, owner_id: str, record_id: str, site_name: str
    ) -> OperationResult[DeviceRecord]:
        await self.load(owner_id)
        record = self._owned(owner_id, record_id)
        if record is None:
            return OperationResult.fail(ErrorKind.registry_not_found, f"Không tìm thấy {record_id}")
        try:
            stored = await self.registry.update(
                record_id, {"siteName": site_name, "lastUpdated": iso_now()}
            )
        except RegistryError as e:
            return OperationResult.fail(e.kind, e.message)

        record.site_name = site_name
        await self.sync.apply_remote(record_id, stored=stored)
        return OperationResult.ok(record, message="Đã đổi tên")

    async def delete(self, owner_id: str, record_id: str) -> OperationResult[Dict[str, Any]]:
        """Xóa record: xóa registry best-effort, luôn xóa local.

        Thiết bị không liên lạc được không chặn việc xóa.
        """
        await self.load(owner_id)
        record = self._owned(owner_id, record_id)
        if record is None:
            return OperationResult.fail(ErrorKind.registry_not_found, f"Không tìm thấy {record_id}")

        remote_deleted = True
        try:
            await self.registry.delete(record_id)
        except RegistryNotFoundError:
            logger.info(f"{record_id} đã không còn trên registry")
        except RegistryError as e:
            remote_deleted = False
            logger.warning(f"Xóa {record_id} trên registry thất bại, chỉ xóa local: {e.message}")

        await self.sync.remove(record_id)
        self.monitor.forget(record_id)
        return OperationResult.ok(
            {"id": record_id, "remote_deleted": remote_deleted}, message="Đã xóa thiết bị"
        )

    async def toggle_component(
        self, owner_id: str, record_id: str, name: str, on: bool
    ) -> OperationResult[DeviceRecord]:
        await self.load(owner_id)
        if self._owned(owner_id, record_id) is None:
            return OperationResult.fail(ErrorKind.registry_not_found, f"Không tìm thấy {record_id}")
        return await self.sync.set_component(record_id, name, on)

    async def sync_now(self, owner_id: str, record_id: str) -> OperationResult[DeviceRecord]:
        await self.load(owner_id)
        if self._owned(owner_id, record_id) is None:
            return OperationResult.fail(ErrorKind.registry_not_found, f"Không tìm thấy {record_id}")
        return await self.sync.sync_now(record_id)

    async def rediscover(self, owner_id: str) -> OperationResult[List[DeviceRecord]]:
        """Tìm lại thiết bị đã đổi IP (sau khi khởi động lại router/thiết bị)."""
        records = await self.load(owner_id)
        local_ip = await self.wifi.local_ip()
        updated = await self.monitor.detect_restarted(records, local_ip)
        return OperationResult.ok(
            [self.sync.get(record.id) or record for record in updated],
            message=f"Cập nhật {len(updated)} thiết bị",
        )

    # ==================== Background triggers ====================

    async def run_monitor(self):
        return await self.monitor.check_all(list(self.sync.records.values()))

    async def run_sync(self) -> int:
        return await self.sync.sync_all()

    async def handle_lifecycle(self, event: LifecycleEvent) -> Dict[str, Any]:
        """foreground/focus -> kiểm tra kết nối ngay; background -> flush registry."""
        if event == LifecycleEvent.background:
            written = await self.sync.flush_all()
            return {"event": event.value, "flushed": written}
        statuses = await self.run_monitor()
        return {
            "event": event.value,
            "checked": len(statuses),
            "statuses": {rid: status.value for rid, status in statuses.items()},
        }

    async def close(self) -> None:
        """Đóng HTTP client của registry/probe và backend cache."""
        await self.registry.close()
        if self.probe is not None:
            await self.probe.close()
        if self.cache is not None:
            await self.cache.close()
