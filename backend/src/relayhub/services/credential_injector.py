"""
CredentialInjector - các bước giao thức phía thiết bị khi provisioning.

Máy trạng thái (ProvisioningState):
    Idle -> JoinedDeviceAP -> GenerationDetected -> CredentialsSent
         -> RebootTriggered -> AwaitingRejoin -> Verified | Failed

Injector lo các bước nói chuyện với AP của thiết bị (join, nhận diện thế hệ
firmware, gửi credentials, reboot). Việc rediscovery và xác minh trên mạng đích
do ProvisioningOrchestrator đảm nhiệm. Mọi bước ghi trạng thái vào một
``ProvisioningContext`` duy nhất.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..config.settings import ProvisioningSettings
from ..core.enums import DeviceGeneration, ErrorKind, ProvisioningState
from ..core.exceptions import (
    ConfigRejectedError,
    DeviceNotFoundError,
    NetworkJoinError,
    RelayHubError,
)
from ..core.logger import get_logger
from ..core.utils.network import host_url
from ..schemas.device import DeviceIdentity
from .http_probe import HttpProbe, ProbeResult, first_success
from .wifi_manager import BaseWifiManager

logger = get_logger(__name__)

RPC_PATH = "/rpc"
DEVICE_INFO_PATH = "/rpc/Shelly.GetDeviceInfo"
LEGACY_WIFI_PATH = "/settings/wifi"


@dataclass
class ProvisioningContext:
    """Trạng thái của một lần provisioning, đi xuyên suốt các bước."""

    ap_ssid: str
    target_ssid: str
    target_password: str = ""
    state: ProvisioningState = ProvisioningState.idle
    history: List[Tuple[ProvisioningState, float]] = field(default_factory=list)
    ap_address: Optional[str] = None
    generation: Optional[DeviceGeneration] = None
    credentials_strategy: Optional[str] = None
    discovered_ip: Optional[str] = None
    ap_identity: Optional[DeviceIdentity] = None
    identity: Optional[DeviceIdentity] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, time.time()))

    def transition(self, state: ProvisioningState) -> None:
        logger.info(f"[Provisioning] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append((state, time.time()))

    def fail(self, exc: RelayHubError) -> None:
        self.error_kind = exc.kind
        self.error = exc.message
        self.transition(ProvisioningState.failed)

    @property
    def states(self) -> List[ProvisioningState]:
        return [state for state, _ in self.history]


@dataclass(frozen=True)
class LegacyStrategy:
    """Một cách mã hóa credentials cho firmware Gen1."""

    name: str
    method: str
    encoding: str  # query | form | json


LEGACY_STRATEGIES: List[LegacyStrategy] = [
    LegacyStrategy("query", "GET", "query"),
    LegacyStrategy("form", "POST", "form"),
    LegacyStrategy("json", "POST", "json"),
]


class CredentialInjector:
    """Các bước provisioning nói chuyện với AP của thiết bị."""

    def __init__(
        self,
        probe: HttpProbe,
        wifi: BaseWifiManager,
        settings: ProvisioningSettings | None = None,
    ):
        self.probe = probe
        self.wifi = wifi
        self.settings = settings or ProvisioningSettings()

    # ==================== JoinedDeviceAP ====================

    async def wait_for_ssid(self, ssid: str, timeout: float, interval: float) -> bool:
        """Poll SSID hiện tại tới khi bằng ``ssid`` hoặc hết ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            current = await self.wifi.current_ssid()
            if current == ssid:
                return True
            if time.monotonic() >= deadline:
                logger.warning(f"SSID hiện tại là {current!r}, không phải {ssid!r} sau {timeout}s")
                return False
            await asyncio.sleep(interval)

    async def locate_ap_address(self) -> Optional[Tuple[str, ProbeResult]]:
        """Địa chỉ AP mặc định đầu tiên trả lời endpoint định danh."""
        for address in self.settings.ap_addresses:
            result = await self.probe.get(
                host_url(address, self.settings.identity_path),
                timeout=self.settings.ap_probe_timeout,
            )
            if result.ok:
                return address, result
            logger.debug(f"AP {address} không trả lời: {result.describe()}")
        return None

    async def join_device_ap(self, ctx: ProvisioningContext) -> None:
        await self.wifi.join(ctx.ap_ssid)
        joined = await self.wait_for_ssid(
            ctx.ap_ssid,
            timeout=self.settings.join_timeout,
            interval=self.settings.join_poll_interval,
        )
        if not joined:
            raise NetworkJoinError(f"Không thể kết nối tới AP {ctx.ap_ssid}")

        # Chờ DHCP của thiết bị cấp IP
        await asyncio.sleep(self.settings.ap_settle_seconds)

        located = await self.locate_ap_address()
        if located is None:
            raise DeviceNotFoundError(
                f"Không liên lạc được thiết bị trên {', '.join(self.settings.ap_addresses)}. "
                f"Kiểm tra đã kết nối Wi-Fi {ctx.ap_ssid}."
            )
        ctx.ap_address, result = located
        ctx.ap_identity = DeviceIdentity.from_payload(result.json())
        ctx.transition(ProvisioningState.joined_device_ap)

    # ==================== GenerationDetected ====================

    async def detect_generation(self, ctx: ProvisioningContext) -> DeviceGeneration:
        """2xx -> structured; trả lời non-2xx -> legacy; không trả lời -> structured."""
        result = await self.probe.get(
            host_url(ctx.ap_address, DEVICE_INFO_PATH),
            timeout=self.settings.detect_timeout,
        )
        if result.answered and not result.ok:
            generation = DeviceGeneration.legacy
        else:
            generation = DeviceGeneration.structured
        logger.info(f"Thế hệ firmware: {generation.value} ({result.describe()})")
        ctx.generation = generation
        ctx.transition(ProvisioningState.generation_detected)
        return generation

    # ==================== CredentialsSent ====================

    async def _send_structured(self, ctx: ProvisioningContext) -> ProbeResult:
        payload = {
            "id": 1,
            "method": "WiFi.SetConfig",
            "params": {
                "config": {
                    "sta": {
                        "ssid": ctx.target_ssid,
                        "pass": ctx.target_password,
                        "enable": True,
                    },
                    # Giữ AP của thiết bị bật sau khi vào mạng đích
                    "ap": {"enable": True, "keep_on": True},
                }
            },
        }
        return await self.probe.post(
            host_url(ctx.ap_address, RPC_PATH),
            json=payload,
            timeout=self.settings.config_timeout,
        )

    async def _send_legacy(self, ctx: ProvisioningContext, strategy: LegacyStrategy) -> ProbeResult:
        url = host_url(ctx.ap_address, LEGACY_WIFI_PATH)
        credentials = {"ssid": ctx.target_ssid, "pass": ctx.target_password}
        logger.debug(f"Gen1 credentials qua {strategy.name}")
        if strategy.encoding == "query":
            return await self.probe.probe(
                url, strategy.method, params=credentials, timeout=self.settings.config_timeout
            )
        if strategy.encoding == "form":
            return await self.probe.probe(
                url, strategy.method, form=credentials, timeout=self.settings.config_timeout
            )
        return await self.probe.probe(
            url, strategy.method, json=credentials, timeout=self.settings.config_timeout
        )

    async def send_credentials(self, ctx: ProvisioningContext) -> str:
        """Gửi credentials mạng đích. Trả về tên strategy được thiết bị chấp nhận."""
        answered = False
        last_error = ""

        if ctx.generation == DeviceGeneration.structured:
            result = await self._send_structured(ctx)
            if result.ok:
                ctx.credentials_strategy = "rpc"
                ctx.transition(ProvisioningState.credentials_sent)
                return "rpc"
            answered = result.answered
            last_error = result.describe()
            logger.warning(f"WiFi.SetConfig không được chấp nhận ({last_error}), thử giao thức Gen1")

        outcome = await first_success(
            LEGACY_STRATEGIES, lambda strategy: self._send_legacy(ctx, strategy)
        )
        if outcome.succeeded:
            ctx.credentials_strategy = outcome.winner.name
            ctx.transition(ProvisioningState.credentials_sent)
            return outcome.winner.name

        answered = answered or outcome.any_answered
        if outcome.failures:
            last_error = outcome.failures[-1][1].describe()
        if not answered:
            raise DeviceNotFoundError(f"Thiết bị không trả lời khi gửi cấu hình Wi-Fi: {last_error}")
        raise ConfigRejectedError(f"Thiết bị từ chối mọi cách gửi cấu hình Wi-Fi: {last_error}")

    # ==================== RebootTriggered ====================

    async def trigger_reboot(self, ctx: ProvisioningContext) -> None:
        """Gen2 reboot qua RPC; lỗi bị bỏ qua. Gen1 tự reboot sau khi nhận cấu hình."""
        if ctx.generation == DeviceGeneration.structured:
            result = await self.probe.post(
                host_url(ctx.ap_address, RPC_PATH),
                json={"id": 2, "method": "Shelly.Reboot", "params": {}},
                timeout=self.settings.config_timeout,
            )
            if not result.ok:
                logger.warning(f"Lỗi khi reboot (có thể bình thường): {result.describe()}")
        ctx.transition(ProvisioningState.reboot_triggered)

    # ==================== AwaitingRejoin ====================

    async def rejoin_target(self, ctx: ProvisioningContext) -> None:
        """Đưa client về mạng đích. Thất bại chỉ được log, bước rediscovery sẽ quyết định."""
        try:
            await self.wifi.join(ctx.target_ssid, ctx.target_password or None)
        except NetworkJoinError as e:
            logger.warning(f"Không tự kết nối lại được {ctx.target_ssid}: {e.message}")
        ctx.transition(ProvisioningState.awaiting_rejoin)
        await asyncio.sleep(self.settings.reboot_wait_seconds + self.settings.rejoin_settle_seconds)

    async def inject(self, ctx: ProvisioningContext) -> ProvisioningContext:
        """Chạy các bước phía AP: JoinedDeviceAP tới AwaitingRejoin."""
        await self.join_device_ap(ctx)
        await self.detect_generation(ctx)
        await self.send_credentials(ctx)
        await self.trigger_reboot(ctx)
        await self.rejoin_target(ctx)
        return ctx
