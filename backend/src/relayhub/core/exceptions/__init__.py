from .device_exceptions import (
    ConfigRejectedError,
    DeviceNotFoundError,
    InvalidRequestError,
    NetworkJoinError,
    OperationInProgressError,
    ProbeNetworkError,
    ProbeTimeoutError,
    RegistryConflictError,
    RegistryError,
    RegistryNotFoundError,
    RegistryUnavailableError,
    RelayHubError,
    VerificationFailedError,
)

__all__ = [
    "RelayHubError",
    "ProbeTimeoutError",
    "ProbeNetworkError",
    "DeviceNotFoundError",
    "ConfigRejectedError",
    "VerificationFailedError",
    "NetworkJoinError",
    "OperationInProgressError",
    "RegistryError",
    "RegistryConflictError",
    "RegistryUnavailableError",
    "RegistryNotFoundError",
    "InvalidRequestError",
]
