# Test helpers package
from .test_utils import (
    AP_IP,
    CLIENT_IP,
    DEVICE_LAN_IP,
    START_MS,
    FakeClock,
    FakeDevice,
    FakeNetwork,
    create_record,
    create_provisioning_payload,
    assert_response_success,
)

__all__ = [
    "AP_IP",
    "CLIENT_IP",
    "DEVICE_LAN_IP",
    "START_MS",
    "FakeClock",
    "FakeDevice",
    "FakeNetwork",
    "create_record",
    "create_provisioning_payload",
    "assert_response_success",
]
