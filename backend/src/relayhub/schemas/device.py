"""
Device schemas - Pydantic models for validation and serialization.

Persisted/wire form uses camelCase aliases (deviceId, macAddress, waterUsage,
...) so the same document shape is shared by the registry and the local cache.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.enums import DeviceGeneration, DeviceStatus

# Physical output index of each actuator on the relay board
COMPONENT_RELAYS: Dict[str, int] = {
    "pump": 0,
    "heater": 1,
    "auger": 2,
    "highWater": 3,
}

COMPONENT_LABELS: Dict[str, str] = {
    "pump": "Pump",
    "heater": "Heater",
    "auger": "Auger",
    "highWater": "High Water Alarm",
}

# Actuator whose on-time drives the water usage integration
FLOW_COMPONENT = "pump"


class ComponentState(BaseModel):
    """Relay state and power telemetry of one actuator."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    relay: int = 0
    status: bool = False
    power: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    energy: float = 0.0
    temperature: float = 0.0
    frequency: float = 0.0


def default_component(key: str) -> ComponentState:
    return ComponentState(name=COMPONENT_LABELS[key], relay=COMPONENT_RELAYS[key])


class Components(BaseModel):
    """The fixed set of four actuators. Never partial."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pump: ComponentState = Field(default_factory=lambda: default_component("pump"))
    heater: ComponentState = Field(default_factory=lambda: default_component("heater"))
    auger: ComponentState = Field(default_factory=lambda: default_component("auger"))
    high_water: ComponentState = Field(
        default_factory=lambda: default_component("highWater"), alias="highWater"
    )

    @classmethod
    def normalize(cls, raw: Any) -> "Components":
        """Build a complete component map from any stored shape.

        Accepts None, a simple ``{name: bool}`` map, or a (possibly partial)
        detailed map. Missing actuators and fields get defaults; the relay
        index and label always come from the fixed mapping.
        """
        if isinstance(raw, Components):
            return raw.model_copy(deep=True)

        data: Dict[str, Any] = {}
        source = raw if isinstance(raw, dict) else {}
        for key in COMPONENT_RELAYS:
            value = source.get(key)
            if value is None and key == "highWater":
                value = source.get("high_water")
            base = default_component(key).model_dump()
            if isinstance(value, bool):
                base["status"] = value
            elif isinstance(value, ComponentState):
                base.update(value.model_dump())
            elif isinstance(value, dict):
                base.update({k: v for k, v in value.items() if v is not None})
            base["relay"] = COMPONENT_RELAYS[key]
            base["name"] = COMPONENT_LABELS[key]
            data[key] = ComponentState(**base)
        return cls.model_validate(data)

    def get(self, key: str) -> ComponentState:
        if key not in COMPONENT_RELAYS:
            raise KeyError(key)
        return getattr(self, "high_water" if key == "highWater" else key)

    def set(self, key: str, state: ComponentState) -> None:
        if key not in COMPONENT_RELAYS:
            raise KeyError(key)
        setattr(self, "high_water" if key == "highWater" else key, state)

    def items(self):
        for key in COMPONENT_RELAYS:
            yield key, self.get(key)


class WaterUsage(BaseModel):
    """Daily liters keyed by local date, plus the last integration sample."""

    model_config = ConfigDict(extra="ignore")

    daily: Dict[str, float] = Field(default_factory=dict)
    timestamp: Optional[int] = None  # epoch ms of the last sample

    @field_validator("daily", mode="before")
    @classmethod
    def _coerce_daily(cls, value):
        if not isinstance(value, dict):
            return {}
        return {str(k): float(v or 0) for k, v in value.items()}


class DeviceIdentity(BaseModel):
    """Hardware identity read from the device's identity endpoint."""

    device_id: str
    mac_address: str
    model: Optional[str] = None
    generation: Optional[int] = None
    firmware: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["DeviceIdentity"]:
        """Parse the identity JSON. Returns None when no hardware id can be read.

        Gen2 firmware reports ``id``/``mac``; Gen1 only ``mac`` (and
        ``type``), so the device id is derived from the MAC there.
        """
        if not isinstance(payload, dict):
            return None
        nested = payload.get("device") if isinstance(payload.get("device"), dict) else {}
        mac = payload.get("mac") or nested.get("mac")
        device_id = payload.get("id") or nested.get("id")
        if not device_id and mac:
            device_id = f"shelly-{str(mac).lower()}"
        if not device_id:
            return None
        generation = payload.get("gen")
        return cls(
            device_id=str(device_id),
            mac_address=str(mac) if mac else "N/A",
            model=payload.get("model") or payload.get("type"),
            generation=int(generation) if isinstance(generation, int) else None,
            firmware=payload.get("fw_id") or payload.get("fw") or payload.get("ver"),
            name=payload.get("name"),
        )

    def matches(self, device_id: Optional[str], mac_address: Optional[str]) -> bool:
        """True when this identity designates the same hardware."""
        if mac_address and mac_address != "N/A" and self.mac_address != "N/A":
            if mac_address.replace(":", "").lower() == self.mac_address.replace(":", "").lower():
                return True
        return bool(device_id) and device_id == self.device_id


class DeviceRecord(BaseModel):
    """A provisioned device as stored in the registry and the local cache."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    owner_id: str = Field(alias="ownerId")
    device_id: str = Field(alias="deviceId")
    mac_address: str = Field(default="N/A", alias="macAddress")
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    site_name: str = Field(default="", alias="siteName")
    status: DeviceStatus = DeviceStatus.not_connected
    components: Components = Field(default_factory=Components)
    water_usage: WaterUsage = Field(default_factory=WaterUsage, alias="waterUsage")
    notifications_enabled: bool = Field(default=False, alias="notificationsEnabled")
    generation: Optional[DeviceGeneration] = None
    model: Optional[str] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("components", mode="before")
    @classmethod
    def _normalize_components(cls, value):
        return Components.normalize(value)

    @field_validator("water_usage", mode="before")
    @classmethod
    def _normalize_usage(cls, value):
        return value if value is not None else WaterUsage()

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        if isinstance(value, str):
            normalized = value.replace("_", " ").strip().lower()
            for status in DeviceStatus:
                if status.value.lower() == normalized:
                    return status
            if normalized in {"notconnected", "not connected"}:
                return DeviceStatus.not_connected
            if normalized in {"maintenancerequired"}:
                return DeviceStatus.maintenance_required
        return value

    def to_document(self) -> Dict[str, Any]:
        """Full persisted form (camelCase, JSON-safe)."""
        return self.model_dump(by_alias=True, mode="json")

    def usage_patch(self) -> Dict[str, Any]:
        """Shallow patch carrying the telemetry/usage fields written by sync.

        Status and IP belong to the connection monitor and are not included.
        """
        doc = self.to_document()
        return {
            "components": doc["components"],
            "waterUsage": doc["waterUsage"],
            "lastUpdated": doc["lastUpdated"],
        }


# ============ Requests ============


class ProvisioningRequest(BaseModel):
    """User-initiated "add device" with new Wi-Fi credentials."""

    model_config = ConfigDict(extra="forbid")

    site_name: str = Field(..., min_length=1, max_length=100)
    target_ssid: str = Field(..., min_length=1, max_length=64)
    target_password: str = Field(default="", max_length=128)
    ap_ssid: str = Field(
        ..., min_length=1, max_length=64, examples=["ShellyPro4PM-AABBCCDDEEFF"]
    )
    owner_id: Optional[str] = None


class RegisterDeviceRequest(BaseModel):
    """Register a device that is already on the client's network."""

    model_config = ConfigDict(extra="forbid")

    site_name: str = Field(..., min_length=1, max_length=100)
    ip_address: Optional[str] = None
    owner_id: Optional[str] = None


class DeviceRename(BaseModel):
    model_config = ConfigDict(extra="forbid")

    site_name: str = Field(..., min_length=1, max_length=100)


class ComponentToggle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    on: bool
