"""
Registry client - kho document đám mây chứa DeviceRecord.

Registry là collaborator bên ngoài, chỉ được dùng qua interface
list_by_owner/get/create/update/delete. ``update`` là shallow merge.

Hai implementation:
- ``HttpRegistryClient``: REST API qua httpx
  (GET /devices/{owner_id}, POST /devices, PUT /devices/{id}, DELETE /devices/{id})
- ``InMemoryRegistryClient``: chế độ local/degraded, có kiểm tra version tùy chọn
  để mô phỏng ghi đồng thời.

Lỗi được ánh xạ thành RegistryConflictError / RegistryUnavailableError /
RegistryNotFoundError.
"""

import asyncio
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Dict, List, Optional

import httpx

from ..config.settings import RegistrySettings
from ..core.exceptions import (
    RegistryConflictError,
    RegistryError,
    RegistryNotFoundError,
    RegistryUnavailableError,
)
from ..core.logger import get_logger
from ..core.utils.timezone import iso_now

logger = get_logger(__name__)

CONFLICT_MARKERS = ("conditionalcheckfailed", "concurrent", "conflict", "version mismatch")


class BaseRegistryClient(ABC):
    """Interface registry document theo owner."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        """Tất cả record của một owner."""

    @abstractmethod
    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Tạo record mới (record["id"] đã được gán)."""

    @abstractmethod
    async def update(
        self,
        record_id: str,
        patch: Dict[str, Any],
        expected_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Shallow merge ``patch`` vào record.

        Args:
            expected_updated_at: updatedAt mà client thấy lần cuối; nếu registry
                đã đổi từ đó thì raise RegistryConflictError.
        """

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Xóa record."""

    async def get(self, owner_id: str, record_id: str) -> Dict[str, Any]:
        for record in await self.list_by_owner(owner_id):
            if record.get("id") == record_id:
                return record
        raise RegistryNotFoundError(f"Record not found: {record_id}", status_code=404)

    async def close(self) -> None:
        """Release resources."""


class HttpRegistryClient(BaseRegistryClient):
    """HTTP client wrapper cho registry REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Registry server URL
            api_key: API key (gửi qua header x-api-key)
            timeout: Request timeout in seconds
            transport: Transport httpx tùy chọn cho test
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, registry_settings: RegistrySettings, transport=None) -> "HttpRegistryClient":
        return cls(
            base_url=registry_settings.url,
            api_key=registry_settings.api_key,
            timeout=registry_settings.timeout,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["x-api-key"] = self.api_key

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """
        Make HTTP request to registry API.

        Raises:
            RegistryUnavailableError: Connect error, timeout, 5xx
            RegistryNotFoundError: 404
            RegistryConflictError: 409/412 hoặc body báo ghi đồng thời
            RegistryError: Other errors
        """
        client = await self._get_client()

        try:
            response = await client.request(method=method, url=path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Registry request timeout: {e}")
            raise RegistryUnavailableError("Registry request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Registry connection failed: {e}")
            raise RegistryUnavailableError("Cannot connect to registry server") from e

        if response.status_code == 404:
            raise RegistryNotFoundError(f"Resource not found: {path}", status_code=404)

        if response.status_code in (409, 412):
            raise RegistryConflictError(
                f"Registry conflict on {path}: {response.text}",
                status_code=response.status_code,
            )

        if response.status_code >= 500:
            if any(marker in response.text.lower() for marker in CONFLICT_MARKERS):
                raise RegistryConflictError(
                    f"Registry conflict on {path}: {response.text}",
                    status_code=response.status_code,
                )
            raise RegistryUnavailableError(
                f"Registry server error: {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise RegistryError(
                f"Registry request failed: {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        # Server có thể bọc kết quả trong {"data": ...}
        if isinstance(payload, dict) and "data" in payload and len(payload) <= 3:
            return payload["data"]
        return payload

    async def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        payload = self._unwrap(await self._request("GET", f"/devices/{owner_id}"))
        if isinstance(payload, dict):
            payload = payload.get("devices", [])
        return [item for item in payload or [] if isinstance(item, dict)]

    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._unwrap(await self._request("POST", "/devices", json=record))
        return payload if isinstance(payload, dict) and payload else record

    async def update(
        self,
        record_id: str,
        patch: Dict[str, Any],
        expected_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"If-Match": expected_updated_at} if expected_updated_at else None
        payload = self._unwrap(
            await self._request("PUT", f"/devices/{record_id}", json=patch, headers=headers)
        )
        return payload if isinstance(payload, dict) else {}

    async def delete(self, record_id: str) -> None:
        await self._request("DELETE", f"/devices/{record_id}")


class InMemoryRegistryClient(BaseRegistryClient):
    """Registry trong bộ nhớ tiến trình (không bền vững).

    Args:
        check_versions: Bật optimistic concurrency: ``update`` với
            ``expected_updated_at`` khác updatedAt hiện tại sẽ raise conflict.
    """

    def __init__(self, check_versions: bool = True):
        self.check_versions = check_versions
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._revision = 0
        self.writes: List[tuple] = []
        self.available = True

    def _ensure_available(self) -> None:
        if not self.available:
            raise RegistryUnavailableError("Registry unavailable")

    def _stamp(self) -> str:
        # updatedAt luôn đổi sau mỗi lần ghi, kể cả khi iso_now trùng
        self._revision += 1
        return f"{iso_now()}#{self._revision}"

    async def list_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        self._ensure_available()
        return [
            deepcopy(record)
            for record in self._records.values()
            if record.get("ownerId") == owner_id
        ]

    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_available()
        async with self._lock:
            record_id = record.get("id")
            if not record_id:
                raise RegistryError("Record thiếu id", status_code=400)
            if record_id in self._records:
                raise RegistryConflictError(f"Record đã tồn tại: {record_id}", status_code=409)
            stored = deepcopy(record)
            stored["updatedAt"] = self._stamp()
            stored.setdefault("createdAt", stored["updatedAt"])
            self._records[record_id] = stored
            self.writes.append(("create", record_id))
            return deepcopy(stored)

    async def update(
        self,
        record_id: str,
        patch: Dict[str, Any],
        expected_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._apply(record_id, patch, expected_updated_at, "update")

    async def _apply(
        self,
        record_id: str,
        patch: Dict[str, Any],
        expected_updated_at: Optional[str],
        op: str,
    ) -> Dict[str, Any]:
        self._ensure_available()
        async with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise RegistryNotFoundError(f"Record not found: {record_id}", status_code=404)
            if (
                self.check_versions
                and expected_updated_at is not None
                and current.get("updatedAt") != expected_updated_at
            ):
                raise RegistryConflictError(
                    f"ConditionalCheckFailed: {record_id} đã bị thay đổi", status_code=409
                )
            current.update(deepcopy(patch))
            current["updatedAt"] = self._stamp()
            self.writes.append((op, record_id))
            return deepcopy(current)

    async def delete(self, record_id: str) -> None:
        self._ensure_available()
        async with self._lock:
            if self._records.pop(record_id, None) is None:
                raise RegistryNotFoundError(f"Record not found: {record_id}", status_code=404)
            self.writes.append(("delete", record_id))

    async def external_update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Ghi từ một installation khác (không kiểm tra version)."""
        return await self._apply(record_id, patch, None, "external")

    def update_count(self, record_id: Optional[str] = None) -> int:
        return sum(
            1
            for op, rid in self.writes
            if op == "update" and (record_id is None or rid == record_id)
        )


def create_registry_client(registry_settings: RegistrySettings) -> BaseRegistryClient:
    """Factory: URL rỗng -> in-memory, ngược lại -> HTTP."""
    if registry_settings.url:
        return HttpRegistryClient.from_settings(registry_settings)
    logger.warning("Registry URL chưa cấu hình, dùng registry in-memory")
    return InMemoryRegistryClient()
