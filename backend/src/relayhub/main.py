from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .api import router
from .config import Settings, load_config
from .core.logger import SERVER_VERSION, setup_logging
from .core.utils.cache import BaseCacheManager, create_cache_manager
from .core.utils.paths import get_cache_dir
from .core.uvicorn_config import setup_uvicorn_logging
from .services import (
    BaseRegistryClient,
    BaseWifiManager,
    ConnectionMonitor,
    CredentialInjector,
    DeviceControl,
    DeviceService,
    HttpProbe,
    MQTTService,
    ProvisioningOrchestrator,
    SchedulerService,
    StateSyncEngine,
    SubnetScanner,
    create_registry_client,
    create_wifi_manager,
)

# Thiết lập logging từ đầu
setup_logging()
setup_uvicorn_logging()


def build_device_service(
    settings: Settings,
    mqtt_service: Optional[MQTTService] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    registry: Optional[BaseRegistryClient] = None,
    cache: Optional[BaseCacheManager] = None,
    wifi: Optional[BaseWifiManager] = None,
) -> DeviceService:
    """Nối các engine lại với nhau theo cấu hình (tham số tùy chọn dùng cho test)."""
    probe = HttpProbe.from_settings(settings.probe, transport=transport)
    registry = registry or create_registry_client(settings.registry)
    cache = cache or create_cache_manager(settings.cache, get_cache_dir())
    wifi = wifi or create_wifi_manager(settings.wifi_backend)

    scanner = SubnetScanner(probe, settings.scanner)
    injector = CredentialInjector(probe, wifi, settings.provisioning)
    orchestrator = ProvisioningOrchestrator(
        probe=probe,
        scanner=scanner,
        injector=injector,
        wifi=wifi,
        registry=registry,
        cache=cache,
        settings=settings.provisioning,
    )
    control = DeviceControl(probe, settings.sync)
    monitor = ConnectionMonitor(
        probe=probe,
        registry=registry,
        scanner=scanner,
        settings=settings.monitor,
        mqtt_service=mqtt_service,
        control=control,
    )
    sync = StateSyncEngine(
        control=control,
        registry=registry,
        cache=cache,
        settings=settings.sync,
        tz=settings.client.tz,
        mqtt_service=mqtt_service,
    )
    service = DeviceService(
        registry=registry,
        sync=sync,
        monitor=monitor,
        orchestrator=orchestrator,
        wifi=wifi,
        probe=probe,
        cache=cache,
    )
    return service


async def startup_components(app: FastAPI) -> None:
    """Khởi tạo MQTT, DeviceService và scheduler."""
    logger = setup_logging().bind(tag=__name__)

    settings = Settings.from_dict(load_config())
    app.state.config = settings
    app.state.mqtt_service = None
    app.state.scheduler_service = None

    try:
        mqtt_service = MQTTService.from_config(settings.mqtt)
        await mqtt_service.start()
        app.state.mqtt_service = mqtt_service
        if mqtt_service.is_available():
            logger.info("[Startup] MQTT service initialized")
        else:
            logger.debug("[Startup] MQTT service running in degraded mode (no config)")
    except Exception as exc:
        logger.warning(f"[Startup] Failed to initialize MQTT service: {exc}")
        app.state.mqtt_service = None

    device_service = build_device_service(settings, app.state.mqtt_service)
    app.state.device_service = device_service

    # Nạp cache rồi registry cho owner mặc định trước khi chạy vòng nền
    if settings.client.owner_id:
        devices = await device_service.load(settings.client.owner_id)
        logger.info(f"[Startup] Đã nạp {len(devices)} thiết bị cho {settings.client.owner_id}")

    try:
        scheduler_service = SchedulerService(
            device_service,
            monitor_interval=settings.monitor.interval_seconds,
            sync_interval=settings.sync.interval_seconds,
        )
        await scheduler_service.start()
        app.state.scheduler_service = scheduler_service
        logger.info("[Startup] Scheduler service đã khởi động")
    except Exception as exc:
        logger.warning(f"[Startup] Không thể khởi động scheduler service: {exc}")
        app.state.scheduler_service = None


async def shutdown_components(app: FastAPI) -> None:
    """Flush state và giải phóng tài nguyên khi shutdown."""
    logger = setup_logging().bind(tag=__name__)

    scheduler_service: SchedulerService | None = getattr(app.state, "scheduler_service", None)
    device_service: DeviceService | None = getattr(app.state, "device_service", None)
    mqtt_service: MQTTService | None = getattr(app.state, "mqtt_service", None)

    if scheduler_service:
        await scheduler_service.shutdown()
        logger.info("[Shutdown] Scheduler đã shutdown")

    if device_service:
        written = await device_service.sync.flush_all()
        logger.info(f"[Shutdown] Flush {written} record lên registry")
        await device_service.close()

    if mqtt_service:
        await mqtt_service.shutdown()
        logger.info("[Shutdown] MQTT service shutdown completed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Custom lifespan for the application."""
    await startup_components(app)
    try:
        yield
    finally:
        await shutdown_components(app)


def create_application(lifespan=None) -> FastAPI:
    application = FastAPI(
        title="relayhub",
        version=SERVER_VERSION,
        description="Provisioning và đồng bộ trạng thái cho thiết bị relay",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


app = create_application(lifespan=lifespan)
