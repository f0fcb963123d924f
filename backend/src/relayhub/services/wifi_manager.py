"""
WifiManager - điều khiển kết nối Wi-Fi của chính client.

Provisioning cần chuyển client sang AP mở của thiết bị rồi quay về mạng đích.
Hai backend:
- ``StaticWifiManager``: client không tự chuyển mạng (máy chủ đã có route tới
  cả AP thiết bị lẫn mạng đích, hoặc môi trường test). ``join`` chỉ ghi nhận SSID.
- ``NmcliWifiManager``: dùng NetworkManager (``nmcli``) qua subprocess async.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.exceptions import NetworkJoinError
from ..core.logger import get_logger
from ..core.utils.network import get_local_ip

logger = get_logger(__name__)


class BaseWifiManager(ABC):
    """Interface điều khiển Wi-Fi phía client."""

    @abstractmethod
    async def current_ssid(self) -> Optional[str]:
        """SSID đang kết nối, None nếu không có."""

    @abstractmethod
    async def join(self, ssid: str, password: Optional[str] = None) -> None:
        """Kết nối tới SSID. Raise NetworkJoinError nếu thất bại."""

    async def local_ip(self) -> str:
        return await asyncio.to_thread(get_local_ip)


class StaticWifiManager(BaseWifiManager):
    """Backend không chuyển mạng thật, chỉ ghi nhận SSID được yêu cầu."""

    def __init__(self, ssid: Optional[str] = None, ip_address: Optional[str] = None):
        self._ssid = ssid
        self._ip_address = ip_address
        self.history: List[str] = []

    async def current_ssid(self) -> Optional[str]:
        return self._ssid

    async def join(self, ssid: str, password: Optional[str] = None) -> None:
        logger.debug(f"[static] join {ssid}")
        self.history.append(ssid)
        self._ssid = ssid

    async def local_ip(self) -> str:
        if self._ip_address:
            return self._ip_address
        return await super().local_ip()


class NmcliWifiManager(BaseWifiManager):
    """Backend NetworkManager.

    Args:
        interface: Wi-Fi interface (ví dụ wlan0), None để nmcli tự chọn
        command_timeout: Timeout cho mỗi lệnh nmcli (giây)
    """

    def __init__(self, interface: Optional[str] = None, command_timeout: float = 30.0):
        self.interface = interface
        self.command_timeout = command_timeout

    async def _run(self, args: List[str], check: bool = True) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise NetworkJoinError(f"Không tìm thấy lệnh {args[0]}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise NetworkJoinError(f"cmd timeout: {' '.join(args)}") from e

        out = stdout.decode(errors="replace")
        if check and process.returncode != 0:
            raise NetworkJoinError(f"cmd failed ({process.returncode}): {' '.join(args)}\n{out}")
        return out

    async def current_ssid(self) -> Optional[str]:
        out = await self._run(["nmcli", "-t", "-f", "ACTIVE,SSID", "device", "wifi"], check=False)
        for line in out.splitlines():
            active, _, ssid = line.partition(":")
            if active == "yes" and ssid:
                return ssid.replace("\\:", ":")
        return None

    async def join(self, ssid: str, password: Optional[str] = None) -> None:
        args = ["nmcli", "device", "wifi", "connect", ssid]
        if self.interface:
            args += ["ifname", self.interface]
        if password:
            args += ["password", password]
        logger.info(f"nmcli: kết nối tới {ssid}")
        await self._run(args, check=True)


def create_wifi_manager(backend: str) -> BaseWifiManager:
    """Factory chọn backend Wi-Fi theo cấu hình (static | nmcli)."""
    if (backend or "static").lower() == "nmcli":
        return NmcliWifiManager()
    return StaticWifiManager()
