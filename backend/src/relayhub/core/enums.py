"""
Enumeration types for core data models.

Provides type-safe enums for device status, provisioning states and the
error taxonomy shared by every service.
"""

from enum import Enum


class DeviceStatus(str, Enum):
    """Reachability classification of a device record."""

    connected = "Connected"
    not_connected = "Not Connected"
    maintenance_required = "Maintenance Required"


class DeviceGeneration(str, Enum):
    """Configuration protocol family spoken by the device firmware."""

    structured = "gen2"  # JSON-RPC endpoints under /rpc
    legacy = "gen1"  # /settings query/form endpoints


class ProvisioningState(str, Enum):
    """Provisioning state machine states."""

    idle = "Idle"
    joined_device_ap = "JoinedDeviceAP"
    generation_detected = "GenerationDetected"
    credentials_sent = "CredentialsSent"
    reboot_triggered = "RebootTriggered"
    awaiting_rejoin = "AwaitingRejoin"
    verified = "Verified"
    failed = "Failed"


class ProbeOutcome(str, Enum):
    """Outcome of a single HTTP probe."""

    ok = "ok"  # device answered (any HTTP status)
    timed_out = "timed_out"
    network_error = "network_error"


class ErrorKind(str, Enum):
    """Error taxonomy surfaced in OperationResult.error_kind."""

    probe_timeout = "ProbeTimeout"
    probe_network_error = "ProbeNetworkError"
    device_not_found = "DeviceNotFound"
    config_rejected = "ConfigRejected"
    verification_failed = "VerificationFailed"
    registry_conflict = "RegistryConflict"
    registry_unavailable = "RegistryUnavailable"
    registry_not_found = "RegistryNotFound"
    network_join_failed = "NetworkJoinFailed"
    operation_in_progress = "OperationInProgress"
    invalid_request = "InvalidRequest"


class LifecycleEvent(str, Enum):
    """Application lifecycle edges forwarded by the UI layer."""

    foreground = "foreground"
    focus = "focus"
    background = "background"
