"""
Tests cho DeviceControl (Switch.GetStatus / Switch.Set).
"""

import pytest

from helpers import DEVICE_LAN_IP
from relayhub.config.settings import SyncSettings
from relayhub.schemas.device import Components
from relayhub.services import DeviceControl


@pytest.fixture
def control(probe) -> DeviceControl:
    return DeviceControl(probe, SyncSettings(relay_timeout=0.5))


class TestReadRelay:
    @pytest.mark.asyncio
    async def test_get_read(self, control, network, device):
        device.relays[1] = True

        reading = await control.read_relay(DEVICE_LAN_IP, 1)

        assert reading["status"] is True
        assert reading["power"] == 120.5
        assert reading["energy"] == 1234.5
        assert reading["temperature"] == 41.2
        assert [m for m, _, p in network.requests if p == "/rpc/Switch.GetStatus"] == ["GET"]

    @pytest.mark.asyncio
    async def test_falls_back_to_post(self, control, network, device):
        device.switch_status_get = False
        device.relays[2] = True

        reading = await control.read_relay(DEVICE_LAN_IP, 2)

        assert reading["status"] is True
        assert [m for m, _, p in network.requests if p == "/rpc/Switch.GetStatus"] == [
            "GET",
            "POST",
        ]

    @pytest.mark.asyncio
    async def test_unreachable(self, control):
        assert await control.read_relay("192.168.1.250", 0) is None

    @pytest.mark.asyncio
    async def test_read_components_through_post(self, control, device):
        device.switch_status_get = False
        device.relays[0] = True

        components = await control.read_components(DEVICE_LAN_IP, Components())

        assert components.pump.status is True
        assert components.high_water.status is False


class TestRestoreComponents:
    @pytest.mark.asyncio
    async def test_restores_every_relay(self, control, device):
        components = Components.normalize({"pump": True, "highWater": True})

        restored = await control.restore_components(DEVICE_LAN_IP, components)

        assert restored == ["pump", "heater", "auger", "highWater"]
        assert device.relays == {0: True, 1: False, 2: False, 3: True}

    @pytest.mark.asyncio
    async def test_unreachable_device(self, control):
        restored = await control.restore_components("192.168.1.250", Components())

        assert restored == []
