"""
MQTT Service - fan-out trạng thái thiết bị ra MQTT broker.

Các sự kiện được publish:
- ``{topic_base}/{device_id}/status``: Connected / Not Connected khi đổi trạng thái
- ``{topic_base}/{device_id}/components``: actuator được bật/tắt

Graceful degradation: thiếu config thì mọi publish là no-op (trả về False),
không throw. Tự kết nối lại khi mất kết nối.
"""

from __future__ import annotations

import asyncio
import json
import ssl
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from relayhub.config.settings import MQTTSettings
from relayhub.core.logger import get_logger

logger = get_logger(__name__)

CONNECT_TIMEOUT = 10.0
RETRY_DELAY = 5.0


class MQTTService:
    """Kết nối MQTT dùng chung cho ConnectionMonitor và StateSyncEngine.

    Attributes:
        config: MQTTSettings (None -> chế độ unavailable)
    """

    def __init__(self, config: Optional[MQTTSettings] = None) -> None:
        self.config = config
        self._client: Optional[mqtt.Client] = None
        self._connected = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._closing = False
        self._started = False

        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._keepalive: int = 60
        self._is_secure = False

    @classmethod
    def from_config(cls, config: Optional[MQTTSettings] = None) -> "MQTTService":
        """Tạo service từ config; config None hoặc thiếu URL -> degraded mode."""
        instance = cls(config)
        if not config or not config.url:
            logger.warning("MQTT chưa cấu hình, trạng thái thiết bị sẽ không được fan-out")
        return instance

    @property
    def topic_base(self) -> str:
        if self.config and self.config.topic_base:
            return self.config.topic_base.rstrip("/")
        return "relayhub"

    def topic(self, device_id: str, kind: str) -> str:
        return f"{self.topic_base}/{device_id}/{kind}"

    def _initialize_client(self) -> bool:
        """Khởi tạo paho client. False nếu không có config hợp lệ."""
        if self._client is not None:
            return True

        if not self.config or not self.config.url:
            return False

        url = urlparse(self.config.url)
        if not url.hostname:
            logger.warning(f"Không thể phân tích MQTT URL: {self.config.url}")
            return False

        self._host = url.hostname
        self._is_secure = url.scheme in {"mqtts", "ssl", "tls"}
        self._port = url.port or (8883 if self._is_secure else 1883)
        self._keepalive = self.config.keepalive

        client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        if self._is_secure:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
            client.tls_insecure_set(False)

        client.reconnect_delay_set(
            min_delay=self.config.reconnect_min_delay,
            max_delay=self.config.reconnect_max_delay,
        )
        self._client = client
        return True

    async def start(self) -> None:
        """Bắt đầu kết nối (idempotent, không throw khi thiếu config)."""
        if self._started:
            return

        if not self._initialize_client():
            logger.info("MQTT service không khởi động do không có config hợp lệ")
            return

        self._started = True
        self._loop = asyncio.get_running_loop()
        self._schedule_connect()

    def _schedule_connect(self) -> None:
        if self._connect_task and not self._connect_task.done():
            return
        if self._loop is None:
            return
        self._connect_task = self._loop.create_task(self._connect())

    async def _connect(self) -> bool:
        client = self._client
        if client is None or self._host is None or self._port is None:
            return False

        self._connected.clear()
        try:
            await asyncio.to_thread(client.connect, self._host, self._port, self._keepalive)
            client.loop_start()
            await asyncio.wait_for(self._connected.wait(), timeout=CONNECT_TIMEOUT)
            logger.info(f"MQTT kết nối thành công tới {self._host}:{self._port}")
            return True
        except asyncio.TimeoutError:
            logger.warning(f"MQTT kết nối tới {self._host}:{self._port} quá thời gian")
        except ConnectionRefusedError as e:
            logger.warning(f"MQTT kết nối bị từ chối: {self._host}:{self._port} - {e}")
        except OSError as exc:
            logger.warning(f"MQTT lỗi khi connect tới {self._host}:{self._port}: {exc}")

        await asyncio.sleep(RETRY_DELAY)
        if not self._closing:
            self._schedule_connect()
        return False

    def _on_connect(self, client, userdata, connect_flags, rc, properties):  # pragma: no cover - callback
        if rc == 0:
            if self._loop:
                self._loop.call_soon_threadsafe(self._connected.set)
        else:
            logger.warning(f"MQTT kết nối thất bại, rc={rc}")

    def _on_disconnect(self, client, userdata, disconnect_flags, rc, properties):  # pragma: no cover - callback
        if self._loop:
            self._loop.call_soon_threadsafe(self._connected.clear)
        if self._closing:
            return
        logger.warning("MQTT bị ngắt kết nối, thử kết nối lại")
        if self._loop:
            self._loop.call_soon_threadsafe(self._schedule_connect)

    def is_available(self) -> bool:
        """Có config hợp lệ và đã start (không đảm bảo connection đang active)."""
        return bool(self.config and self.config.url and self._started)

    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def _ensure_connection(self) -> bool:
        if self._connected.is_set():
            return True
        if not self._client:
            return False
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=5.0)
            return True
        except asyncio.TimeoutError:
            return False

    async def publish(
        self,
        topic: str,
        payload: Dict[str, Any],
        qos: int = 1,
        retain: bool = False,
    ) -> bool:
        """Publish JSON payload. False nếu service không khả dụng hoặc lỗi."""
        if not self.is_available():
            logger.debug(f"MQTT không khả dụng, bỏ qua publish tới {topic}")
            return False

        client = self._client
        if not client:
            return False

        if not await self._ensure_connection():
            logger.warning(f"MQTT chưa sẵn sàng, không thể publish tới {topic}")
            return False

        message = json.dumps(payload, ensure_ascii=False, default=str)
        try:
            await asyncio.to_thread(client.publish, topic, message, qos, retain)
            logger.debug(f"Đã publish MQTT message tới {topic}")
            return True
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error(f"Lỗi khi publish MQTT ({topic}): {exc}")
            return False

    async def publish_device_event(
        self, device_id: str, kind: str, payload: Dict[str, Any], retain: bool = False
    ) -> bool:
        return await self.publish(self.topic(device_id, kind), payload, retain=retain)

    async def shutdown(self) -> None:
        """Dừng service và giải phóng tài nguyên (idempotent)."""
        self._closing = True
        client = self._client

        if not client:
            self._started = False
            self._closing = False
            return

        try:
            if self._connect_task and not self._connect_task.done():
                self._connect_task.cancel()
                try:
                    await self._connect_task
                except asyncio.CancelledError:
                    pass

            try:
                await asyncio.wait_for(asyncio.to_thread(client.loop_stop), timeout=2.0)
                await asyncio.wait_for(asyncio.to_thread(client.disconnect), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("MQTT disconnect timeout")

            logger.info("MQTT service đã shutdown")
        finally:
            self._connected.clear()
            self._client = None
            self._connect_task = None
            self._loop = None
            self._closing = False
            self._started = False
