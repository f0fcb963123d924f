"""
ProvisioningOrchestrator - điều phối luồng "thêm thiết bị".

Luồng: CredentialInjector (AP phía thiết bị) -> rediscovery trên mạng đích ->
xác minh HTTP trực tiếp (identity + status) -> đúng một lần ``registry.create``.
Registry không bao giờ được ghi trên nhánh chưa Verified.
"""

import asyncio
from typing import Callable, Optional, Set, Tuple

from ..config.settings import ProvisioningSettings
from ..core.enums import DeviceGeneration, DeviceStatus, ErrorKind, ProvisioningState
from ..core.exceptions import (
    DeviceNotFoundError,
    InvalidRequestError,
    RegistryError,
    RelayHubError,
    VerificationFailedError,
)
from ..core.logger import get_logger
from ..core.utils.cache import BaseCacheManager, CacheKey
from ..core.utils.network import host_url, subnet_prefix
from ..core.utils.timezone import iso_now, now_ms
from ..schemas.base import OperationResult
from ..schemas.device import DeviceIdentity, DeviceRecord, ProvisioningRequest, WaterUsage
from .credential_injector import CredentialInjector, ProvisioningContext
from .http_probe import HttpProbe
from .registry_client import BaseRegistryClient
from .subnet_scanner import SubnetScanner, candidate_hosts
from .wifi_manager import BaseWifiManager

logger = get_logger(__name__)


def build_record_id(owner_id: str, device_id: str, epoch_ms: int) -> str:
    return f"{owner_id}_{device_id}_{epoch_ms}"


def generation_from_identity(identity: DeviceIdentity) -> DeviceGeneration:
    if identity.generation and identity.generation >= 2:
        return DeviceGeneration.structured
    return DeviceGeneration.legacy


class ProvisioningOrchestrator:
    """Điều phối provisioning và đăng ký thiết bị có sẵn trên mạng.

    Một cờ single-flight chặn provisioning/tạo site thứ hai chạy đồng thời
    trong cùng tiến trình.
    """

    def __init__(
        self,
        probe: HttpProbe,
        scanner: SubnetScanner,
        injector: CredentialInjector,
        wifi: BaseWifiManager,
        registry: BaseRegistryClient,
        cache: Optional[BaseCacheManager] = None,
        settings: ProvisioningSettings | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.probe = probe
        self.scanner = scanner
        self.injector = injector
        self.wifi = wifi
        self.registry = registry
        self.cache = cache
        self.settings = settings or ProvisioningSettings()
        self.clock = clock
        self._in_progress = False
        self.last_context: Optional[ProvisioningContext] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    # ==================== Verification ====================

    async def verify(self, host: str) -> DeviceIdentity:
        """Xác minh thiết bị tại ``host``: identity + status đều phải trả 2xx."""
        timeout = self.settings.verify_timeout
        identity_result = await self.probe.get(
            host_url(host, self.settings.identity_path), timeout=timeout
        )
        if not identity_result.ok:
            raise VerificationFailedError(
                f"Thiết bị {host} không trả lời định danh: {identity_result.describe()}"
            )
        identity = DeviceIdentity.from_payload(identity_result.json())
        if identity is None:
            raise VerificationFailedError(f"Thiết bị {host} không có định danh phần cứng")

        status_result = await self.probe.get(
            host_url(host, self.settings.status_path), timeout=timeout
        )
        if not status_result.ok:
            raise VerificationFailedError(
                f"Thiết bị {host} không trả lời status: {status_result.describe()}"
            )
        return identity

    async def _rediscover(self, ctx: ProvisioningContext) -> Tuple[str, DeviceIdentity]:
        local_ip = await self.wifi.local_ip()
        excluded: Set[str] = set()
        attempts = self.settings.rediscovery_attempts
        last_error = "không tìm thấy thiết bị trên mạng"

        for attempt in range(1, attempts + 1):
            logger.info(f"Rediscovery lần {attempt}/{attempts} trên subnet của {local_ip}")
            candidates = [
                host
                for host in candidate_hosts(local_ip, self.scanner.settings)
                if host not in excluded
            ]
            host = await self.scanner.scan(candidates=candidates)
            if host:
                try:
                    identity = await self.verify(host)
                except VerificationFailedError as e:
                    last_error = e.message
                    logger.warning(f"Xác minh {host} thất bại: {e.message}")
                else:
                    if ctx.ap_identity is None or ctx.ap_identity.matches(
                        identity.device_id, identity.mac_address
                    ):
                        return host, identity
                    excluded.add(host)
                    last_error = f"{host} là thiết bị khác ({identity.device_id})"
                    logger.warning(f"Bỏ qua {host}: định danh không khớp thiết bị vừa cấu hình")
                    continue

            if attempt < attempts:
                await asyncio.sleep(self.settings.rediscovery_delay)

        raise VerificationFailedError(
            f"Thiết bị đã nhận cấu hình nhưng không xác minh được sau {attempts} lần: {last_error}"
        )

    # ==================== Commit ====================

    async def _flag_duplicates(self, owner_id: str, identity: DeviceIdentity) -> None:
        try:
            existing = await self.registry.list_by_owner(owner_id)
        except RegistryError as e:
            logger.debug(f"Bỏ qua kiểm tra trùng lặp: {e.message}")
            return
        for doc in existing:
            if identity.matches(doc.get("deviceId"), doc.get("macAddress")):
                logger.warning(
                    f"Thiết bị {identity.device_id} đã có record {doc.get('id')}, "
                    "record mới sẽ được tạo và lọc trùng khi đọc"
                )

    async def _commit(
        self,
        owner_id: str,
        site_name: str,
        host: str,
        identity: DeviceIdentity,
        generation: Optional[DeviceGeneration],
    ) -> DeviceRecord:
        await self._flag_duplicates(owner_id, identity)

        created_ms = self.clock()
        timestamp = iso_now()
        record = DeviceRecord(
            id=build_record_id(owner_id, identity.device_id, created_ms),
            owner_id=owner_id,
            device_id=identity.device_id,
            mac_address=identity.mac_address,
            ip_address=host,
            site_name=site_name,
            status=DeviceStatus.connected,
            water_usage=WaterUsage(daily={}, timestamp=created_ms),
            generation=generation or generation_from_identity(identity),
            model=identity.model,
            last_updated=timestamp,
            created_at=timestamp,
            updated_at=timestamp,
        )

        stored = await self.registry.create(record.to_document())
        record = DeviceRecord.model_validate(stored)
        logger.info(f"Đã tạo record {record.id} cho thiết bị {record.device_id} tại {host}")

        if self.cache is not None:
            try:
                await self.cache.set(CacheKey.DEVICE_RECORD, record.to_document(), record.id)
            except RuntimeError as e:
                logger.warning(f"Không ghi được cache cho {record.id}: {e}")
        return record

    # ==================== Entry points ====================

    async def provision(
        self, request: ProvisioningRequest, owner_id: Optional[str] = None
    ) -> OperationResult[DeviceRecord]:
        """Provision thiết bị mới với credentials Wi-Fi mới."""
        owner = owner_id or request.owner_id
        if not owner:
            return OperationResult.fail(ErrorKind.invalid_request, "Thiếu owner_id")
        if self._in_progress:
            return OperationResult.fail(
                ErrorKind.operation_in_progress, "Đang có một thao tác provisioning khác"
            )

        self._in_progress = True
        ctx = ProvisioningContext(
            ap_ssid=request.ap_ssid,
            target_ssid=request.target_ssid,
            target_password=request.target_password,
        )
        self.last_context = ctx
        try:
            await self.injector.inject(ctx)
            host, identity = await self._rediscover(ctx)
            ctx.discovered_ip = host
            ctx.identity = identity
            ctx.transition(ProvisioningState.verified)

            record = await self._commit(owner, request.site_name, host, identity, ctx.generation)
            return OperationResult.ok(record, message="Thiết bị đã được thêm")
        except RelayHubError as e:
            logger.error(f"Provisioning thất bại ở {ctx.state.value}: {e.message}")
            ctx.fail(e)
            return OperationResult.fail(e.kind, e.message)
        finally:
            self._in_progress = False

    async def register_existing(
        self,
        owner_id: Optional[str],
        site_name: str,
        ip_address: Optional[str] = None,
    ) -> OperationResult[DeviceRecord]:
        """Đăng ký thiết bị đã ở sẵn trên mạng của client (quét nếu không có IP)."""
        if not owner_id:
            return OperationResult.fail(ErrorKind.invalid_request, "Thiếu owner_id")
        if self._in_progress:
            return OperationResult.fail(
                ErrorKind.operation_in_progress, "Đang có một thao tác provisioning khác"
            )

        self._in_progress = True
        try:
            host = ip_address
            if not host:
                local_ip = await self.wifi.local_ip()
                host = await self.scanner.scan(local_ip)
                if not host:
                    raise DeviceNotFoundError("Không tìm thấy thiết bị trên mạng hiện tại")
            elif subnet_prefix(host) is None:
                raise InvalidRequestError(f"Địa chỉ IP không hợp lệ: {host}")

            identity = await self.verify(host)
            record = await self._commit(owner_id, site_name, host, identity, None)
            return OperationResult.ok(record, message="Thiết bị đã được đăng ký")
        except RelayHubError as e:
            logger.error(f"Đăng ký thiết bị thất bại: {e.message}")
            return OperationResult.fail(e.kind, e.message)
        finally:
            self._in_progress = False
