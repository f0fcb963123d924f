"""
Tests cho WifiManager backends.
"""

from unittest.mock import AsyncMock, patch

import pytest

from relayhub.core.exceptions import NetworkJoinError
from relayhub.services.wifi_manager import (
    NmcliWifiManager,
    StaticWifiManager,
    create_wifi_manager,
)


class TestStaticWifiManager:
    @pytest.mark.asyncio
    async def test_join_records_history(self):
        wifi = StaticWifiManager(ssid="HomeNet", ip_address="192.168.1.42")

        await wifi.join("ShellyPro4PM-AABB")
        await wifi.join("HomeNet", "secret")

        assert wifi.history == ["ShellyPro4PM-AABB", "HomeNet"]
        assert await wifi.current_ssid() == "HomeNet"
        assert await wifi.local_ip() == "192.168.1.42"

    @pytest.mark.asyncio
    async def test_local_ip_falls_back_to_detection(self):
        wifi = StaticWifiManager()

        with patch("relayhub.services.wifi_manager.get_local_ip", return_value="10.0.0.7"):
            assert await wifi.local_ip() == "10.0.0.7"


class TestNmcliWifiManager:
    @pytest.mark.asyncio
    async def test_current_ssid_parses_active_line(self):
        wifi = NmcliWifiManager()
        output = "no:Neighbour\nyes:Home\\:Net\nno:\n"

        with patch.object(wifi, "_run", AsyncMock(return_value=output)):
            assert await wifi.current_ssid() == "Home:Net"

    @pytest.mark.asyncio
    async def test_current_ssid_none_when_inactive(self):
        wifi = NmcliWifiManager()

        with patch.object(wifi, "_run", AsyncMock(return_value="no:Neighbour\n")):
            assert await wifi.current_ssid() is None

    @pytest.mark.asyncio
    async def test_join_builds_command(self):
        wifi = NmcliWifiManager(interface="wlan0")
        run = AsyncMock(return_value="")

        with patch.object(wifi, "_run", run):
            await wifi.join("HomeNet", "secret")

        run.assert_awaited_once_with(
            ["nmcli", "device", "wifi", "connect", "HomeNet", "ifname", "wlan0", "password", "secret"],
            check=True,
        )

    @pytest.mark.asyncio
    async def test_join_open_network(self):
        wifi = NmcliWifiManager()
        run = AsyncMock(return_value="")

        with patch.object(wifi, "_run", run):
            await wifi.join("ShellyPro4PM-AABB")

        run.assert_awaited_once_with(
            ["nmcli", "device", "wifi", "connect", "ShellyPro4PM-AABB"], check=True
        )

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        wifi = NmcliWifiManager()

        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("nmcli"))
        ):
            with pytest.raises(NetworkJoinError):
                await wifi.join("HomeNet")


class TestFactory:
    def test_backends(self):
        assert isinstance(create_wifi_manager("nmcli"), NmcliWifiManager)
        assert isinstance(create_wifi_manager("NMCLI"), NmcliWifiManager)
        assert isinstance(create_wifi_manager("static"), StaticWifiManager)
        assert isinstance(create_wifi_manager(""), StaticWifiManager)
