from .http_probe import HttpProbe, ProbeResult, first_success
from .subnet_scanner import SubnetScanner, candidate_hosts
from .wifi_manager import BaseWifiManager, NmcliWifiManager, StaticWifiManager, create_wifi_manager
from .credential_injector import CredentialInjector, ProvisioningContext
from .registry_client import (
    BaseRegistryClient,
    HttpRegistryClient,
    InMemoryRegistryClient,
    create_registry_client,
)
from .device_control import DeviceControl
from .provisioning_service import ProvisioningOrchestrator
from .connection_monitor import ConnectionMonitor
from .state_sync import StateSyncEngine, merge_daily_usage
from .device_service import DeviceService, dedupe_records
from .scheduler_service import SchedulerService
from .mqtt_service import MQTTService

__all__ = [
    "HttpProbe",
    "ProbeResult",
    "first_success",
    "SubnetScanner",
    "candidate_hosts",
    "BaseWifiManager",
    "StaticWifiManager",
    "NmcliWifiManager",
    "create_wifi_manager",
    "CredentialInjector",
    "ProvisioningContext",
    "BaseRegistryClient",
    "HttpRegistryClient",
    "InMemoryRegistryClient",
    "create_registry_client",
    "DeviceControl",
    "ProvisioningOrchestrator",
    "ConnectionMonitor",
    "StateSyncEngine",
    "merge_daily_usage",
    "DeviceService",
    "dedupe_records",
    "SchedulerService",
    "MQTTService",
]
