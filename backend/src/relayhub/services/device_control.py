"""
DeviceControl - đọc/ghi relay của thiết bị qua JSON-RPC Switch.*.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ..config.settings import SyncSettings
from ..core.exceptions import ConfigRejectedError, DeviceNotFoundError, RelayHubError
from ..core.logger import get_logger
from ..core.utils.network import host_url
from ..schemas.device import COMPONENT_RELAYS, Components, ComponentState
from .http_probe import HttpProbe, ProbeResult, first_success

logger = get_logger(__name__)

SWITCH_STATUS_PATH = "/rpc/Switch.GetStatus"
SWITCH_SET_PATH = "/rpc/Switch.Set"
STATUS_READ_METHODS = ("GET", "POST")


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_switch_status(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Chuẩn hóa body Switch.GetStatus thành các field của ComponentState."""
    energy = payload.get("aenergy")
    temperature = payload.get("temperature")
    if isinstance(temperature, dict):
        temperature = temperature.get("tC")
    frequency = payload.get("freq", payload.get("frequency"))
    return {
        "status": bool(payload.get("output", False)),
        "power": _number(payload.get("apower")),
        "voltage": _number(payload.get("voltage")),
        "current": _number(payload.get("current")),
        "energy": _number(energy.get("total") if isinstance(energy, dict) else energy),
        "temperature": _number(temperature),
        "frequency": _number(frequency),
    }


class DeviceControl:
    """Đọc trạng thái + telemetry của 4 relay và bật/tắt từng relay."""

    def __init__(self, probe: HttpProbe, settings: SyncSettings | None = None):
        self.probe = probe
        self.settings = settings or SyncSettings()

    async def read_relay(self, host: str, relay: int) -> Optional[Dict[str, Any]]:
        """Đọc Switch.GetStatus qua GET, firmware không nhận GET thì thử POST."""
        url = host_url(host, SWITCH_STATUS_PATH)
        timeout = self.settings.relay_timeout

        async def attempt(method: str) -> ProbeResult:
            if method == "GET":
                return await self.probe.get(url, params={"id": relay}, timeout=timeout)
            return await self.probe.post(url, json={"id": relay}, timeout=timeout)

        outcome = await first_success(STATUS_READ_METHODS, attempt)
        if not outcome.succeeded or outcome.result.json() is None:
            last = outcome.result or outcome.failures[-1][1]
            logger.debug(f"Relay {relay} tại {host} không đọc được: {last.describe()}")
            return None
        return parse_switch_status(outcome.result.json())

    async def read_components(self, host: str, current: Components) -> Optional[Components]:
        """Đọc cả 4 relay song song.

        Relay không trả lời giữ nguyên trạng thái cũ. Trả về None nếu không relay
        nào trả lời (chu kỳ không thành công).
        """
        keys = list(COMPONENT_RELAYS)
        readings = await asyncio.gather(
            *(self.read_relay(host, COMPONENT_RELAYS[key]) for key in keys)
        )
        if all(reading is None for reading in readings):
            return None

        updated = current.model_copy(deep=True)
        for key, reading in zip(keys, readings):
            if reading is None:
                continue
            state = updated.get(key).model_dump()
            state.update(reading)
            updated.set(key, ComponentState(**state))
        return updated

    async def set_relay(self, host: str, relay: int, on: bool) -> None:
        """Bật/tắt một relay. Raise nếu thiết bị không trả lời hoặc từ chối."""
        result = await self.probe.post(
            host_url(host, SWITCH_SET_PATH),
            json={"id": relay, "on": on},
            timeout=self.settings.relay_timeout,
        )
        if not result.answered:
            raise DeviceNotFoundError(f"Thiết bị {host} không trả lời: {result.describe()}")
        if not result.ok:
            raise ConfigRejectedError(f"Thiết bị {host} từ chối Switch.Set: {result.describe()}")
        logger.info(f"Relay {relay} tại {host} -> {'ON' if on else 'OFF'}")

    async def restore_components(self, host: str, components: Components) -> List[str]:
        """Ghi lại trạng thái relay đã biết lên thiết bị (sau khi thiết bị khởi động lại).

        Best-effort: relay nào lỗi chỉ log warning. Trả về danh sách component đã ghi.
        """
        restored: List[str] = []
        for key, state in components.items():
            try:
                await self.set_relay(host, state.relay, state.status)
            except RelayHubError as e:
                logger.warning(f"Không khôi phục được {key} tại {host}: {e.message}")
                continue
            restored.append(key)
        return restored
