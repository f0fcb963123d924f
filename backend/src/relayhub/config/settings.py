from copy import deepcopy
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class ServerSettings(BaseSettings):
    """Cấu hình máy chủ HTTP điều khiển"""

    ip: str = "0.0.0.0"
    port: int = 8000

    model_config = ConfigDict(extra="allow")


class ClientSettings(BaseSettings):
    """Cấu hình phía client: chủ sở hữu thiết bị và múi giờ dùng cho date key"""

    owner_id: str = ""
    tz: str = "UTC"

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _migrate_timezone(cls, data):
        if isinstance(data, dict):
            if "tz" not in data and "timezone_offset" in data:
                data = dict(data)
                data["tz"] = str(data["timezone_offset"])
        return data

    @field_validator("tz", mode="before")
    @classmethod
    def _coerce_timezone(cls, value):
        if value is None or value == "":
            return "UTC"
        return str(value)


class ProbeSettings(BaseSettings):
    """Cấu hình HttpProbe (giây)"""

    default_timeout: float = Field(default=5.0, gt=0)
    user_agent: str = "relayhub/0.1.0"

    model_config = ConfigDict(extra="allow")


class ScannerSettings(BaseSettings):
    """Cấu hình quét subnet /24 để tìm thiết bị.

    Attributes:
        batch_size: Số probe chạy song song trong một batch
        probe_timeout: Timeout cho mỗi probe (giây)
        identity_path: Endpoint định danh thiết bị
        dhcp_range: Dải DHCP thường gặp, quét sau gateway
        static_range: Dải IP tĩnh thấp, quét sau dải DHCP
    """

    batch_size: int = Field(default=20, ge=1, le=254)
    probe_timeout: float = Field(default=0.6, gt=0)
    identity_path: str = "/shelly"
    gateway_host: int = Field(default=1, ge=1, le=254)
    dhcp_range: List[int] = Field(default_factory=lambda: [100, 120])
    static_range: List[int] = Field(default_factory=lambda: [2, 50])

    model_config = ConfigDict(extra="allow")

    @field_validator("dhcp_range", "static_range")
    @classmethod
    def _validate_range(cls, value):
        if len(value) != 2 or value[0] > value[1]:
            raise ValueError("range phải có dạng [start, end] với start <= end")
        if value[0] < 1 or value[1] > 254:
            raise ValueError("range phải nằm trong 1..254")
        return value


class ProvisioningSettings(BaseSettings):
    """Cấu hình luồng provisioning (giây)"""

    ap_addresses: List[str] = Field(
        default_factory=lambda: ["192.168.33.1", "192.168.33.2"]
    )
    ap_probe_timeout: float = 3.0
    join_timeout: float = 10.0
    join_poll_interval: float = 0.4
    ap_settle_seconds: float = 5.0
    detect_timeout: float = 3.0
    config_timeout: float = 8.0
    reboot_wait_seconds: float = 30.0
    rejoin_settle_seconds: float = 10.0
    rediscovery_attempts: int = Field(default=5, ge=1)
    rediscovery_delay: float = 5.0
    verify_timeout: float = 15.0
    identity_path: str = "/shelly"
    status_path: str = "/status"

    model_config = ConfigDict(extra="allow")


class MonitorSettings(BaseSettings):
    """Cấu hình ConnectionMonitor"""

    interval_seconds: int = Field(default=30, ge=1)
    endpoint_timeout: float = 2.0
    status_endpoints: List[str] = Field(
        default_factory=lambda: [
            "/shelly",
            "/status",
            "/rpc/Shelly.GetDeviceInfo",
            "/",
            "/settings",
            "/info",
        ]
    )

    model_config = ConfigDict(extra="allow")


class SyncSettings(BaseSettings):
    """Cấu hình StateSyncEngine"""

    interval_seconds: int = Field(default=5, ge=1)
    relay_timeout: float = 3.0
    flow_rate_lpm: float = Field(default=20.0, ge=0)
    min_write_interval: float = Field(default=5.0, ge=0)

    model_config = ConfigDict(extra="allow")


class RegistrySettings(BaseSettings):
    """Cấu hình registry đám mây. URL rỗng nghĩa là dùng registry in-memory."""

    url: str = Field(default="", description="Base URL của registry REST API")
    api_key: str = ""
    timeout: int = Field(default=20, ge=1, le=300)

    model_config = ConfigDict(extra="allow", env_prefix="RELAYHUB_REGISTRY_")


class CacheSettings(BaseSettings):
    """Cấu hình local cache (file hoặc redis)"""

    backend: str = "file"
    directory: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    prefix: str = "device"

    model_config = ConfigDict(extra="allow")

    @field_validator("backend")
    @classmethod
    def _validate_backend(cls, value):
        value = (value or "file").lower()
        if value not in {"file", "redis"}:
            raise ValueError("cache.backend phải là 'file' hoặc 'redis'")
        return value


class MQTTSettings(BaseSettings):
    """Cấu hình MQTT để fan-out trạng thái thiết bị.

    Attributes:
        url: MQTT broker URL (e.g. mqtt://localhost:1883 hoặc mqtts://broker.com:8883)
        topic_base: Prefix của topic, topic đầy đủ là {topic_base}/{device_id}/{kind}
    """

    url: str = Field(default="", description="MQTT broker URL (mqtt:// hoặc mqtts://)")
    username: str = Field(default="", description="Username xác thực MQTT")
    password: str = Field(default="", description="Password xác thực MQTT")
    topic_base: str = "relayhub"
    keepalive: int = Field(default=60, description="Keepalive interval (giây)", ge=10)
    reconnect_min_delay: int = Field(default=2, ge=1)
    reconnect_max_delay: int = Field(default=30, ge=5)

    model_config = ConfigDict(extra="allow")


def _non_empty(section: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Bỏ key rỗng để biến môi trường RELAYHUB_* vẫn áp dụng được."""
    return {k: v for k, v in (section or {}).items() if v not in ("", None)}


class Settings(BaseSettings):
    """Cấu hình chính ứng dụng"""

    server: ServerSettings = Field(default_factory=ServerSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    mqtt: Optional[MQTTSettings] = Field(
        default=None,
        description="MQTT config, None nghĩa là không fan-out",
    )
    wifi_backend: str = "static"

    # Raw config dict (để giữ nguyên các key chưa được khai báo)
    _raw_config: Dict[str, Any] = {}

    model_config = ConfigDict(extra="allow")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Tạo Settings từ dict đọc từ YAML"""
        data = data or {}
        mqtt_data = data.get("mqtt")

        settings = cls(
            server=ServerSettings(**(data.get("server") or {})),
            client=ClientSettings(**(data.get("client") or {})),
            probe=ProbeSettings(**(data.get("probe") or {})),
            scanner=ScannerSettings(**(data.get("scanner") or {})),
            provisioning=ProvisioningSettings(**(data.get("provisioning") or {})),
            monitor=MonitorSettings(**(data.get("monitor") or {})),
            sync=SyncSettings(**(data.get("sync") or {})),
            registry=RegistrySettings(**_non_empty(data.get("registry"))),
            cache=CacheSettings(**(data.get("cache") or {})),
            mqtt=MQTTSettings(**mqtt_data) if mqtt_data else None,
            wifi_backend=data.get("wifi_backend", "static"),
        )
        settings._raw_config = deepcopy(data)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert về dict"""
        return self._raw_config or self.model_dump()
