"""
SubnetScanner - tìm thiết bị trên subnet /24 của client.

Thứ tự ứng viên: gateway (.1) -> dải DHCP (.100-.120) -> dải tĩnh thấp
(.2-.50) -> phần còn lại. Mỗi batch probe song song (giới hạn bằng semaphore),
chờ cả batch rồi trả về địa chỉ đầu tiên theo thứ tự ứng viên đã trả lời
endpoint định danh với HTTP 200.
"""

import asyncio
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config.settings import ScannerSettings
from ..core.logger import get_logger
from ..core.utils.network import host_url, subnet_prefix
from ..schemas.device import DeviceIdentity
from .http_probe import HttpProbe, ProbeResult

logger = get_logger(__name__)


def candidate_hosts(local_ip: str, settings: ScannerSettings | None = None) -> List[str]:
    """Danh sách địa chỉ cần quét theo thứ tự ưu tiên, bỏ qua IP của client."""
    settings = settings or ScannerSettings()
    prefix = subnet_prefix(local_ip)
    if prefix is None:
        return []

    ordered: List[int] = [settings.gateway_host]
    ordered += range(settings.dhcp_range[0], settings.dhcp_range[1] + 1)
    ordered += range(settings.static_range[0], settings.static_range[1] + 1)
    ordered += range(1, 255)

    seen = set()
    own_host = local_ip.strip()
    hosts: List[str] = []
    for octet in ordered:
        if octet in seen:
            continue
        seen.add(octet)
        host = f"{prefix}.{octet}"
        if host == own_host:
            continue
        hosts.append(host)
    return hosts


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SubnetScanner:
    """Quét subnet theo batch để tìm thiết bị qua endpoint định danh."""

    def __init__(self, probe: HttpProbe, settings: ScannerSettings | None = None):
        self.probe = probe
        self.settings = settings or ScannerSettings()

    async def _check(self, host: str, semaphore: asyncio.Semaphore) -> ProbeResult:
        async with semaphore:
            return await self.probe.get(
                host_url(host, self.settings.identity_path),
                timeout=self.settings.probe_timeout,
            )

    async def _sweep(
        self,
        local_ip: Optional[str] = None,
        candidates: Optional[Sequence[str]] = None,
        first_only: bool = True,
    ) -> List[Tuple[str, ProbeResult]]:
        hosts = list(candidates) if candidates is not None else candidate_hosts(local_ip or "", self.settings)
        if not hosts:
            logger.warning(f"Không có địa chỉ nào để quét (local_ip={local_ip})")
            return []

        batch_size = self.settings.batch_size
        semaphore = asyncio.Semaphore(batch_size)
        probed = 0
        hits: List[Tuple[str, ProbeResult]] = []
        for batch in _batches(hosts, batch_size):
            results = await asyncio.gather(*(self._check(host, semaphore) for host in batch))
            probed += len(batch)
            for host, result in zip(batch, results):
                if result.status_code == 200:
                    logger.info(f"Tìm thấy thiết bị tại {host} sau {probed} probe")
                    hits.append((host, result))
                    if first_only:
                        return hits

        if not hits:
            logger.info(f"Quét xong {probed} địa chỉ, không tìm thấy thiết bị")
        return hits

    async def scan(
        self,
        local_ip: Optional[str] = None,
        candidates: Optional[Sequence[str]] = None,
    ) -> Optional[str]:
        """Trả về IP đầu tiên (theo thứ tự ưu tiên) có thiết bị, hoặc None.

        Args:
            local_ip: IPv4 của client, dùng để suy ra prefix /24
            candidates: Danh sách địa chỉ chỉ định sẵn (bỏ qua local_ip)
        """
        found = await self._sweep(local_ip, candidates)
        return found[0][0] if found else None

    def _with_identity(self, host: str, result: ProbeResult) -> Optional[Tuple[str, DeviceIdentity]]:
        identity = DeviceIdentity.from_payload(result.json())
        if identity is None:
            logger.warning(f"Thiết bị tại {host} trả lời nhưng không có định danh phần cứng")
            return None
        return host, identity

    async def scan_for_identity(
        self,
        local_ip: Optional[str] = None,
        candidates: Optional[Sequence[str]] = None,
    ) -> Optional[Tuple[str, DeviceIdentity]]:
        """Như ``scan`` nhưng trả kèm định danh phần cứng đọc được từ thiết bị."""
        found = await self._sweep(local_ip, candidates)
        if not found:
            return None
        return self._with_identity(*found[0])

    async def scan_all_identities(
        self,
        local_ip: Optional[str] = None,
        candidates: Optional[Sequence[str]] = None,
    ) -> List[Tuple[str, DeviceIdentity]]:
        """Quét toàn bộ ứng viên, trả về mọi thiết bị có định danh (theo thứ tự ưu tiên)."""
        found = await self._sweep(local_ip, candidates, first_only=False)
        identities = []
        for host, result in found:
            entry = self._with_identity(host, result)
            if entry is not None:
                identities.append(entry)
        return identities
