"""
Tests cho Settings.from_dict, config.yml đi kèm và tiện ích timezone/network.
"""

from datetime import timedelta, timezone
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from relayhub.config.settings import Settings
from relayhub.core.utils.network import host_url, subnet_prefix
from relayhub.core.utils.timezone import date_key, resolve_timezone

from helpers import START_MS

BASE_CONFIG = Path(__file__).resolve().parents[1] / "src" / "relayhub" / "config" / "config.yml"


class TestSettings:
    def test_defaults_from_empty_dict(self):
        settings = Settings.from_dict({})

        assert settings.provisioning.ap_addresses == ["192.168.33.1", "192.168.33.2"]
        assert settings.scanner.dhcp_range == [100, 120]
        assert settings.sync.flow_rate_lpm == 20.0
        assert settings.sync.min_write_interval == 5.0
        assert settings.monitor.status_endpoints[0] == "/shelly"
        assert settings.mqtt is None
        assert settings.wifi_backend == "static"

    def test_shipped_config_parses(self, monkeypatch):
        monkeypatch.delenv("RELAYHUB_REGISTRY_URL", raising=False)
        data = yaml.safe_load(BASE_CONFIG.read_text(encoding="utf-8"))

        settings = Settings.from_dict(data)

        assert settings.monitor.interval_seconds == 30
        assert settings.sync.interval_seconds == 5
        assert settings.registry.url == ""
        assert settings.cache.backend == "file"
        assert settings.to_dict()["log"]["log_file"] == "relayhub.log"

    def test_registry_env_overrides_empty_values(self, monkeypatch):
        monkeypatch.setenv("RELAYHUB_REGISTRY_URL", "http://registry.local")
        monkeypatch.setenv("RELAYHUB_REGISTRY_API_KEY", "key-1")

        settings = Settings.from_dict({"registry": {"url": "", "api_key": "", "timeout": 30}})

        assert settings.registry.url == "http://registry.local"
        assert settings.registry.api_key == "key-1"
        assert settings.registry.timeout == 30

    def test_shipped_config_reads_registry_env(self, monkeypatch):
        monkeypatch.setenv("RELAYHUB_REGISTRY_URL", "http://registry.local")
        data = yaml.safe_load(BASE_CONFIG.read_text(encoding="utf-8"))

        settings = Settings.from_dict(data)

        assert settings.registry.url == "http://registry.local"
        assert settings.registry.timeout == 20

    def test_overrides(self):
        settings = Settings.from_dict(
            {
                "client": {"owner_id": "owner-9", "timezone_offset": "+07:00"},
                "sync": {"flow_rate_lpm": 12.5},
                "mqtt": {"url": "mqtt://broker:1883", "topic_base": "farm"},
            }
        )

        assert settings.client.owner_id == "owner-9"
        assert settings.client.tz == "+07:00"
        assert settings.sync.flow_rate_lpm == 12.5
        assert settings.mqtt.topic_base == "farm"

    def test_invalid_cache_backend(self):
        with pytest.raises(ValidationError):
            Settings.from_dict({"cache": {"backend": "memcached"}})

    def test_invalid_batch_size(self):
        with pytest.raises(ValidationError):
            Settings.from_dict({"scanner": {"batch_size": 0}})


class TestTimezone:
    def test_named_zone(self):
        # 2024-06-02 12:00 UTC là 2024-06-02 21:00 ở Tokyo
        assert date_key(START_MS, "Asia/Tokyo") == "2024-06-02"
        assert date_key(START_MS + 13 * 3600 * 1000, "Asia/Tokyo") == "2024-06-03"

    def test_offset_forms(self):
        assert resolve_timezone("+07:00") == timezone(timedelta(hours=7))
        assert resolve_timezone("-5") == timezone(timedelta(hours=-5))
        assert resolve_timezone("420") == timezone(timedelta(minutes=420))
        assert resolve_timezone("") == timezone.utc
        assert resolve_timezone("garbage/zone") == timezone.utc


class TestNetworkUtils:
    def test_subnet_prefix(self):
        assert subnet_prefix("192.168.1.42") == "192.168.1"
        assert subnet_prefix(" 10.0.0.5 ") == "10.0.0"
        assert subnet_prefix("192.168.1") is None
        assert subnet_prefix("fe80::1") is None

    def test_host_url(self):
        assert host_url("192.168.1.5", "shelly") == "http://192.168.1.5/shelly"
        assert host_url("192.168.1.5") == "http://192.168.1.5/"
