from typing import AsyncGenerator

import pytest
import pytest_asyncio

from helpers import CLIENT_IP, DEVICE_LAN_IP, START_MS, FakeClock, FakeDevice, FakeNetwork
from relayhub.config.settings import (
    MonitorSettings,
    ProvisioningSettings,
    ScannerSettings,
    SyncSettings,
)
from relayhub.core.utils.cache import FileCacheManager
from relayhub.services import (
    ConnectionMonitor,
    CredentialInjector,
    DeviceControl,
    HttpProbe,
    InMemoryRegistryClient,
    ProvisioningOrchestrator,
    StateSyncEngine,
    StaticWifiManager,
    SubnetScanner,
)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def device(network: FakeNetwork) -> FakeDevice:
    """Thiết bị Gen2 đã có mặt trên mạng đích tại DEVICE_LAN_IP."""
    return network.add(DEVICE_LAN_IP, FakeDevice())


@pytest_asyncio.fixture
async def probe(network: FakeNetwork) -> AsyncGenerator[HttpProbe, None]:
    probe = HttpProbe(default_timeout=1.0, transport=network.transport())
    yield probe
    await probe.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_MS)


@pytest.fixture
def registry() -> InMemoryRegistryClient:
    return InMemoryRegistryClient()


@pytest.fixture
def cache(tmp_path) -> FileCacheManager:
    return FileCacheManager(tmp_path / "cache")


@pytest.fixture
def wifi() -> StaticWifiManager:
    return StaticWifiManager(ssid="HomeNet", ip_address=CLIENT_IP)


@pytest.fixture
def provisioning_settings() -> ProvisioningSettings:
    """Provisioning không chờ: mọi delay bằng 0."""
    return ProvisioningSettings(
        ap_probe_timeout=0.5,
        join_timeout=0.2,
        join_poll_interval=0.01,
        ap_settle_seconds=0,
        detect_timeout=0.5,
        config_timeout=0.5,
        reboot_wait_seconds=0,
        rejoin_settle_seconds=0,
        rediscovery_attempts=3,
        rediscovery_delay=0,
        verify_timeout=0.5,
    )


@pytest.fixture
def scanner(probe: HttpProbe) -> SubnetScanner:
    return SubnetScanner(probe, ScannerSettings(probe_timeout=0.5))


@pytest.fixture
def injector(probe, wifi, provisioning_settings) -> CredentialInjector:
    return CredentialInjector(probe, wifi, provisioning_settings)


@pytest.fixture
def orchestrator(
    probe, scanner, injector, wifi, registry, cache, provisioning_settings, clock
) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(
        probe=probe,
        scanner=scanner,
        injector=injector,
        wifi=wifi,
        registry=registry,
        cache=cache,
        settings=provisioning_settings,
        clock=clock,
    )


@pytest.fixture
def monitor(probe, registry, scanner) -> ConnectionMonitor:
    return ConnectionMonitor(
        probe=probe,
        registry=registry,
        scanner=scanner,
        settings=MonitorSettings(endpoint_timeout=0.5),
        control=DeviceControl(probe, SyncSettings(relay_timeout=0.5)),
    )


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(relay_timeout=0.5, flow_rate_lpm=20.0, min_write_interval=5.0)


@pytest.fixture
def engine(probe, registry, cache, sync_settings, clock) -> StateSyncEngine:
    return StateSyncEngine(
        control=DeviceControl(probe, sync_settings),
        registry=registry,
        cache=cache,
        settings=sync_settings,
        tz="UTC",
        clock=clock,
    )
