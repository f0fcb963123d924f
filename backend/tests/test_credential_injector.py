"""
Tests cho CredentialInjector (các bước phía AP của thiết bị).

Test coverage:
- Join AP: SSID không khớp -> NetworkJoinError, AP không trả lời -> DeviceNotFound
- Fallback địa chỉ AP .1 -> .2
- Nhận diện thế hệ firmware
- Gen2: WiFi.SetConfig; bị từ chối thì rơi về chuỗi Gen1
- Gen1: query -> form -> json; ConfigRejected vs DeviceNotFound
- Reboot lỗi được bỏ qua, rejoin thất bại chỉ log
"""

from unittest.mock import AsyncMock

import pytest

from helpers import FakeDevice
from relayhub.core.enums import DeviceGeneration, ProvisioningState
from relayhub.core.exceptions import (
    ConfigRejectedError,
    DeviceNotFoundError,
    NetworkJoinError,
)
from relayhub.services.credential_injector import LEGACY_STRATEGIES, ProvisioningContext
from relayhub.services.wifi_manager import StaticWifiManager


def _context(**kwargs) -> ProvisioningContext:
    defaults = {
        "ap_ssid": "ShellyPro4PM-AABBCCDDEEFF",
        "target_ssid": "HomeNet",
        "target_password": "s3cret-pass",
    }
    defaults.update(kwargs)
    return ProvisioningContext(**defaults)


class TestProvisioningContext:
    def test_starts_idle(self):
        ctx = _context()
        assert ctx.state == ProvisioningState.idle
        assert ctx.states == [ProvisioningState.idle]

    def test_fail_records_kind(self):
        ctx = _context()
        ctx.fail(ConfigRejectedError("nope"))

        assert ctx.state == ProvisioningState.failed
        assert ctx.error_kind == ConfigRejectedError.kind
        assert ctx.error == "nope"

    def test_legacy_strategy_order(self):
        assert [s.name for s in LEGACY_STRATEGIES] == ["query", "form", "json"]


class TestJoinDeviceAP:
    @pytest.mark.asyncio
    async def test_join_and_locate_primary_address(self, injector, network, wifi):
        network.add("192.168.33.1", FakeDevice(configured=False), role="ap")
        ctx = _context()

        await injector.join_device_ap(ctx)

        assert wifi.history == ["ShellyPro4PM-AABBCCDDEEFF"]
        assert ctx.ap_address == "192.168.33.1"
        assert ctx.ap_identity.device_id == "shellypro4pm-aabbccddeeff"
        assert ctx.state == ProvisioningState.joined_device_ap

    @pytest.mark.asyncio
    async def test_falls_back_to_secondary_address(self, injector, network):
        network.add("192.168.33.2", FakeDevice(configured=False), role="ap")
        ctx = _context()

        await injector.join_device_ap(ctx)

        assert ctx.ap_address == "192.168.33.2"

    @pytest.mark.asyncio
    async def test_no_device_on_ap(self, injector):
        with pytest.raises(DeviceNotFoundError):
            await injector.join_device_ap(_context())

    @pytest.mark.asyncio
    async def test_ssid_never_matches(self, probe, provisioning_settings, network):
        from relayhub.services.credential_injector import CredentialInjector

        class StuckWifi(StaticWifiManager):
            async def join(self, ssid, password=None):
                self.history.append(ssid)

        network.add("192.168.33.1", FakeDevice(configured=False), role="ap")
        injector = CredentialInjector(probe, StuckWifi(ssid="HomeNet"), provisioning_settings)
        ctx = _context()

        with pytest.raises(NetworkJoinError):
            await injector.join_device_ap(ctx)
        assert ctx.ap_address is None


class TestDetectGeneration:
    @pytest.mark.asyncio
    async def test_structured(self, injector, network):
        network.add("192.168.33.1", FakeDevice(gen=2), role="ap")
        ctx = _context(ap_address="192.168.33.1")

        assert await injector.detect_generation(ctx) == DeviceGeneration.structured
        assert ctx.state == ProvisioningState.generation_detected

    @pytest.mark.asyncio
    async def test_legacy_answers_non_2xx(self, injector, network):
        network.add("192.168.33.1", FakeDevice(gen=1), role="ap")
        ctx = _context(ap_address="192.168.33.1")

        assert await injector.detect_generation(ctx) == DeviceGeneration.legacy

    @pytest.mark.asyncio
    async def test_no_answer_assumes_structured(self, injector):
        ctx = _context(ap_address="192.168.33.1")

        assert await injector.detect_generation(ctx) == DeviceGeneration.structured


class TestSendCredentials:
    @pytest.mark.asyncio
    async def test_structured_rpc(self, injector, network):
        device = network.add("192.168.33.1", FakeDevice(gen=2), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.structured)

        strategy = await injector.send_credentials(ctx)

        assert strategy == "rpc"
        assert device.config_attempts == ["rpc"]
        assert device.credentials == {"ssid": "HomeNet", "pass": "s3cret-pass"}
        assert ctx.state == ProvisioningState.credentials_sent

    @pytest.mark.asyncio
    async def test_structured_rejected_falls_back_to_legacy(self, injector, network):
        device = network.add("192.168.33.1", FakeDevice(gen=2, accepts={"form"}), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.structured)

        strategy = await injector.send_credentials(ctx)

        assert strategy == "form"
        assert device.config_attempts == ["rpc", "query", "form"]

    @pytest.mark.asyncio
    async def test_form_only_legacy_device_succeeds_on_second_attempt(self, injector, network):
        device = network.add("192.168.33.1", FakeDevice(gen=1, accepts={"form"}), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.legacy)

        strategy = await injector.send_credentials(ctx)

        assert strategy == "form"
        assert device.config_attempts == ["query", "form"]
        assert ctx.credentials_strategy == "form"

    @pytest.mark.asyncio
    async def test_json_only_legacy_device_succeeds_after_two_failures(self, injector, network):
        device = network.add("192.168.33.1", FakeDevice(gen=1, accepts={"json"}), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.legacy)

        strategy = await injector.send_credentials(ctx)

        assert strategy == "json"
        assert device.config_attempts == ["query", "form", "json"]
        assert device.credentials == {"ssid": "HomeNet", "pass": "s3cret-pass"}

    @pytest.mark.asyncio
    async def test_all_rejected(self, injector, network):
        network.add("192.168.33.1", FakeDevice(gen=1, accepts=set()), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.legacy)

        with pytest.raises(ConfigRejectedError):
            await injector.send_credentials(ctx)

    @pytest.mark.asyncio
    async def test_device_gone(self, injector):
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.legacy)

        with pytest.raises(DeviceNotFoundError):
            await injector.send_credentials(ctx)


class TestRebootAndRejoin:
    @pytest.mark.asyncio
    async def test_structured_reboot(self, injector, network):
        device = network.add("192.168.33.1", FakeDevice(gen=2), role="ap")
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.structured)

        await injector.trigger_reboot(ctx)

        assert device.reboots == 1
        assert ctx.state == ProvisioningState.reboot_triggered

    @pytest.mark.asyncio
    async def test_reboot_errors_ignored(self, injector):
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.structured)

        await injector.trigger_reboot(ctx)

        assert ctx.state == ProvisioningState.reboot_triggered

    @pytest.mark.asyncio
    async def test_legacy_reboot_sends_nothing(self, injector, network):
        ctx = _context(ap_address="192.168.33.1", generation=DeviceGeneration.legacy)

        await injector.trigger_reboot(ctx)

        assert network.requests == []

    @pytest.mark.asyncio
    async def test_rejoin_failure_is_logged_not_raised(self, injector, wifi):
        wifi.join = AsyncMock(side_effect=NetworkJoinError("no such ssid"))
        ctx = _context()

        await injector.rejoin_target(ctx)

        wifi.join.assert_awaited_once_with("HomeNet", "s3cret-pass")
        assert ctx.state == ProvisioningState.awaiting_rejoin


class TestInject:
    @pytest.mark.asyncio
    async def test_full_ap_side_sequence(self, injector, network, wifi):
        device = network.add("192.168.33.1", FakeDevice(configured=False), role="ap")
        ctx = _context()

        await injector.inject(ctx)

        assert ctx.states == [
            ProvisioningState.idle,
            ProvisioningState.joined_device_ap,
            ProvisioningState.generation_detected,
            ProvisioningState.credentials_sent,
            ProvisioningState.reboot_triggered,
            ProvisioningState.awaiting_rejoin,
        ]
        assert device.configured
        assert wifi.history == ["ShellyPro4PM-AABBCCDDEEFF", "HomeNet"]
