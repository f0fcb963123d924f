"""
Domain exceptions raised inside the provisioning and sync services.

Each exception carries its ErrorKind so orchestration entry points can turn
it into an OperationResult without a lookup table.
"""

from ..enums import ErrorKind


class RelayHubError(Exception):
    """Base exception for relayhub service errors."""

    kind: ErrorKind = ErrorKind.invalid_request

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ProbeTimeoutError(RelayHubError):
    kind = ErrorKind.probe_timeout


class ProbeNetworkError(RelayHubError):
    kind = ErrorKind.probe_network_error


class DeviceNotFoundError(RelayHubError):
    """Subnet exhausted, or the device stopped answering."""

    kind = ErrorKind.device_not_found


class ConfigRejectedError(RelayHubError):
    """Device answered but refused every credential encoding."""

    kind = ErrorKind.config_rejected


class VerificationFailedError(RelayHubError):
    """Device reconfigured but not rediscoverable/verifiable within budget."""

    kind = ErrorKind.verification_failed


class NetworkJoinError(RelayHubError):
    kind = ErrorKind.network_join_failed


class OperationInProgressError(RelayHubError):
    kind = ErrorKind.operation_in_progress


class RegistryError(RelayHubError):
    """Base class for registry failures."""

    kind = ErrorKind.registry_unavailable


class RegistryConflictError(RegistryError):
    """Registry rejected a write because the record changed concurrently."""

    kind = ErrorKind.registry_conflict


class RegistryUnavailableError(RegistryError):
    kind = ErrorKind.registry_unavailable


class RegistryNotFoundError(RegistryError):
    kind = ErrorKind.registry_not_found


class InvalidRequestError(RelayHubError):
    kind = ErrorKind.invalid_request
