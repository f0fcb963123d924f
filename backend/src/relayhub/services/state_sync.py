"""
StateSyncEngine - hội tụ trạng thái giữa thiết bị, local cache và registry.

Mỗi chu kỳ cho một thiết bị:
1. Đọc trạng thái + telemetry 4 relay (không relay nào trả lời -> bỏ chu kỳ)
2. Tính thời gian trôi qua từ ``water_usage.timestamp``
3. Pump bật trước và vẫn bật -> cộng ``phút x flow_rate`` vào bucket hôm nay
4. Cập nhật state in-memory và ghi local cache ngay
5. Ghi registry chỉ khi đã qua ``min_write_interval`` từ lần ghi thành công trước

Xung đột registry (ghi đồng thời từ installation khác) được giải bằng merge
daily usage, không retry: state đã merge được giữ local và lần ghi kế tiếp
theo lịch sẽ lưu nó.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..config.settings import SyncSettings
from ..core.enums import DeviceStatus, ErrorKind
from ..core.exceptions import (
    DeviceNotFoundError,
    InvalidRequestError,
    RegistryConflictError,
    RegistryError,
    RegistryNotFoundError,
    RelayHubError,
)
from ..core.logger import get_logger
from ..core.utils.cache import BaseCacheManager, CacheKey
from ..core.utils.timezone import date_key, now_ms, resolve_timezone
from ..schemas.base import OperationResult
from ..schemas.device import COMPONENT_RELAYS, FLOW_COMPONENT, DeviceRecord
from .device_control import DeviceControl
from .registry_client import BaseRegistryClient

logger = get_logger(__name__)


def merge_daily_usage(
    local: Dict[str, float], server: Dict[str, float], today: str
) -> Dict[str, float]:
    """Hợp daily usage theo date key.

    - Hôm nay: local thắng (nếu local có)
    - Ngày cũ có trên server: server thắng
    - Ngày cũ chỉ có ở local: giữ nguyên
    """
    merged = dict(local)
    for day, liters in server.items():
        if day == today and day in local:
            continue
        merged[day] = liters
    return merged


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


class StateSyncEngine:
    """Giữ state in-memory của mọi record đã biết và đồng bộ nó.

    Args:
        control: DeviceControl đọc/ghi relay
        registry: Registry client
        cache: Local cache (key -> JSON)
        settings: SyncSettings (flow rate, write gate, timeout)
        tz: Múi giờ dùng cho date key
        clock: Hàm trả epoch ms hiện tại (test thay bằng đồng hồ giả)
    """

    def __init__(
        self,
        control: DeviceControl,
        registry: BaseRegistryClient,
        cache: Optional[BaseCacheManager] = None,
        settings: SyncSettings | None = None,
        tz: str = "UTC",
        clock: Callable[[], int] = now_ms,
        mqtt_service=None,
    ):
        self.control = control
        self.registry = registry
        self.cache = cache
        self.settings = settings or SyncSettings()
        self.tz = resolve_timezone(tz)
        self.clock = clock
        self.mqtt_service = mqtt_service

        self.records: Dict[str, DeviceRecord] = {}
        self._last_write: Dict[str, int] = {}
        self._versions: Dict[str, Optional[str]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ==================== State ====================

    def _lock_for(self, record_id: str) -> asyncio.Lock:
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        return lock

    def get(self, record_id: str) -> Optional[DeviceRecord]:
        return self.records.get(record_id)

    def for_owner(self, owner_id: str) -> List[DeviceRecord]:
        return [record for record in self.records.values() if record.owner_id == owner_id]

    def today(self, epoch_ms: Optional[int] = None) -> str:
        return date_key(epoch_ms if epoch_ms is not None else self.clock(), self.tz)

    async def _cache_write(self, record: DeviceRecord) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(CacheKey.DEVICE_RECORD, record.to_document(), record.id)
        except RuntimeError as e:
            logger.warning(f"Không ghi được cache cho {record.id}: {e}")

    async def upsert(self, record: DeviceRecord, version: Optional[str] = None) -> None:
        """Thêm/thay record (ví dụ sau khi provisioning thành công)."""
        self.records[record.id] = record
        self._versions[record.id] = version or record.updated_at
        await self._cache_write(record)

    async def remove(self, record_id: str) -> None:
        self.records.pop(record_id, None)
        self._last_write.pop(record_id, None)
        self._versions.pop(record_id, None)
        self._locks.pop(record_id, None)
        if self.cache is not None:
            try:
                await self.cache.delete(CacheKey.DEVICE_RECORD, record_id)
            except RuntimeError as e:
                logger.warning(f"Không xóa được cache của {record_id}: {e}")

    async def apply_remote(
        self,
        record_id: str,
        status: Optional[DeviceStatus] = None,
        ip_address: Optional[str] = None,
        stored: Optional[dict] = None,
    ) -> None:
        """Áp dụng thay đổi status/IP do ConnectionMonitor ghi lên registry."""
        record = self.records.get(record_id)
        if record is None:
            return
        if status is not None:
            record.status = status
        if ip_address is not None:
            record.ip_address = ip_address
        if stored is not None and stored.get("updatedAt"):
            self._versions[record_id] = stored["updatedAt"]
        await self._cache_write(record)

    async def load(self, owner_id: str) -> List[DeviceRecord]:
        """Khởi động: đọc local cache trước, sau đó bổ sung/merge từ registry."""
        if self.cache is not None:
            try:
                cached = await self.cache.values(CacheKey.DEVICE_RECORD)
            except (RuntimeError, ValueError) as e:
                logger.warning(f"Không đọc được local cache: {e}")
                cached = []
            for doc in cached:
                if doc.get("ownerId") != owner_id or not doc.get("id"):
                    continue
                self.records.setdefault(doc["id"], DeviceRecord.model_validate(doc))
            logger.info(f"Đã nạp {len(self.for_owner(owner_id))} record từ local cache")

        try:
            docs = await self.registry.list_by_owner(owner_id)
        except RegistryError as e:
            logger.warning(f"Registry không khả dụng khi nạp {owner_id}, dùng cache: {e.message}")
            return self.for_owner(owner_id)

        today = self.today()
        remote_ids = set()
        for doc in docs:
            if not doc.get("id"):
                continue
            remote = DeviceRecord.model_validate(doc)
            remote_ids.add(remote.id)
            local = self.records.get(remote.id)
            if local is not None:
                remote.components = local.components
                remote.water_usage.daily = merge_daily_usage(
                    local.water_usage.daily, remote.water_usage.daily, today
                )
                remote.water_usage.timestamp = max(
                    local.water_usage.timestamp or 0, remote.water_usage.timestamp or 0
                ) or None
            self.records[remote.id] = remote
            self._versions[remote.id] = doc.get("updatedAt")
            await self._cache_write(remote)

        # Record chỉ còn trong cache đã bị xóa ở registry
        for record in self.for_owner(owner_id):
            if record.id not in remote_ids:
                logger.info(f"{record.id} không còn trên registry, xóa khỏi local")
                await self.remove(record.id)

        return self.for_owner(owner_id)

    # ==================== Usage integration ====================

    def _integrate(self, record: DeviceRecord, was_on: bool, is_on: bool, now: int) -> float:
        usage = record.water_usage
        last = usage.timestamp
        added = 0.0
        if last is not None and was_on and is_on and now > last:
            minutes = (now - last) / 60000
            added = minutes * self.settings.flow_rate_lpm
            key = self.today(now)
            usage.daily[key] = usage.daily.get(key, 0.0) + added
        usage.timestamp = max(now, last or 0)
        return added

    # ==================== Registry writes ====================

    async def _resolve_conflict(self, record: DeviceRecord) -> None:
        try:
            remote_doc = await self.registry.get(record.owner_id, record.id)
        except RegistryError as e:
            logger.warning(f"Không đọc lại được {record.id} sau xung đột: {e.message}")
            return

        remote = DeviceRecord.model_validate(remote_doc)
        record.water_usage.daily = merge_daily_usage(
            record.water_usage.daily, remote.water_usage.daily, self.today()
        )
        record.site_name = remote.site_name
        record.notifications_enabled = remote.notifications_enabled
        self._versions[record.id] = remote_doc.get("updatedAt")
        await self._cache_write(record)
        logger.info(f"Đã merge daily usage của {record.id} sau xung đột, chờ lần ghi kế tiếp")

    async def _write(self, record: DeviceRecord, now: int, force: bool = False) -> bool:
        last = self._last_write.get(record.id)
        gate_ms = self.settings.min_write_interval * 1000
        if not force and last is not None and now - last < gate_ms:
            return False

        try:
            stored = await self.registry.update(
                record.id,
                record.usage_patch(),
                expected_updated_at=self._versions.get(record.id),
            )
        except RegistryConflictError as e:
            logger.info(f"Xung đột khi ghi {record.id}: {e.message}")
            await self._resolve_conflict(record)
            return False
        except RegistryNotFoundError:
            logger.warning(f"{record.id} không còn trên registry")
            return False
        except RegistryError as e:
            logger.warning(f"Registry không khả dụng, giữ state local cho {record.id}: {e.message}")
            return False

        self._last_write[record.id] = now
        self._versions[record.id] = (stored or {}).get("updatedAt")
        return True

    # ==================== Cycles ====================

    async def sync_device(self, record_id: str) -> bool:
        """Một chu kỳ đồng bộ. True nếu đọc được thiết bị."""
        record = self.records.get(record_id)
        if record is None or not record.ip_address:
            return False

        async with self._lock_for(record_id):
            components = await self.control.read_components(record.ip_address, record.components)
            if components is None:
                logger.debug(f"{record_id}: không relay nào trả lời, bỏ chu kỳ")
                return False

            now = self.clock()
            was_on = record.components.get(FLOW_COMPONENT).status
            is_on = components.get(FLOW_COMPONENT).status
            self._integrate(record, was_on, is_on, now)
            record.components = components
            record.last_updated = _iso(now)

            await self._cache_write(record)
            await self._write(record, now)
            return True

    async def sync_all(self) -> int:
        """Đồng bộ mọi record có IP, độc lập nhau. Trả về số chu kỳ thành công."""
        record_ids = [rid for rid, record in self.records.items() if record.ip_address]
        if not record_ids:
            return 0
        results = await asyncio.gather(
            *(self.sync_device(rid) for rid in record_ids), return_exceptions=True
        )
        succeeded = 0
        for rid, result in zip(record_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Chu kỳ đồng bộ {rid} lỗi: {result}")
            elif result:
                succeeded += 1
        return succeeded

    async def flush_all(self) -> int:
        """Ghi không điều kiện mọi record (bỏ qua write gate), khi app vào nền."""
        now = self.clock()
        written = 0
        for record in list(self.records.values()):
            async with self._lock_for(record.id):
                if await self._write(record, now, force=True):
                    written += 1
        logger.info(f"Flush {written}/{len(self.records)} record lên registry")
        return written

    async def set_component(
        self, record_id: str, name: str, on: bool
    ) -> OperationResult[DeviceRecord]:
        """Bật/tắt một actuator theo yêu cầu người dùng, qua cùng đường merge."""
        record = self.records.get(record_id)
        try:
            if record is None:
                raise RegistryNotFoundError(f"Không tìm thấy record {record_id}")
            if name not in COMPONENT_RELAYS:
                raise InvalidRequestError(f"Component không hợp lệ: {name}")
            if not record.ip_address:
                raise DeviceNotFoundError(f"{record.site_name or record_id} chưa có địa chỉ IP")

            async with self._lock_for(record_id):
                now = self.clock()
                # Tích lũy usage tới thời điểm này với trạng thái pump cũ
                pump_on = record.components.get(FLOW_COMPONENT).status
                self._integrate(record, pump_on, pump_on, now)

                await self.control.set_relay(record.ip_address, COMPONENT_RELAYS[name], on)
                state = record.components.get(name)
                state.status = on
                record.last_updated = _iso(now)

                await self._cache_write(record)
                await self._write(record, now)
        except RelayHubError as e:
            logger.warning(f"Không đổi được {name} của {record_id}: {e.message}")
            return OperationResult.fail(e.kind, e.message)

        if self.mqtt_service and self.mqtt_service.is_available():
            await self.mqtt_service.publish_device_event(
                record.device_id,
                "components",
                {"recordId": record.id, "component": name, "on": on},
            )
        return OperationResult.ok(record)

    async def sync_now(self, record_id: str) -> OperationResult[DeviceRecord]:
        record = self.records.get(record_id)
        if record is None:
            return OperationResult.fail(ErrorKind.registry_not_found, f"Không tìm thấy record {record_id}")
        if not await self.sync_device(record_id):
            return OperationResult.fail(
                ErrorKind.device_not_found,
                f"Không đọc được trạng thái của {record.site_name or record_id}",
            )
        return OperationResult.ok(self.records[record_id])
