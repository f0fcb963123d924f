# ruff: noqa
from fastcrud.exceptions.http_exceptions import (
    CustomException,
    BadRequestException,
    NotFoundException,
    UnprocessableEntityException,
    DuplicateValueException,
)

from ..enums import ErrorKind


class ServiceUnavailableException(CustomException):
    """Exception for 503 Service Unavailable errors."""

    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(status_code=503, detail=detail)


class ConflictException(CustomException):
    """Exception for 409 Conflict errors."""

    def __init__(self, detail: str = "Operation already in progress"):
        super().__init__(status_code=409, detail=detail)


def exception_for(kind: ErrorKind | None, message: str) -> CustomException:
    """Map một ErrorKind sang HTTP exception tương ứng."""
    if kind in (ErrorKind.device_not_found, ErrorKind.registry_not_found):
        return NotFoundException(message)
    if kind == ErrorKind.operation_in_progress:
        return ConflictException(message)
    if kind == ErrorKind.registry_unavailable:
        return ServiceUnavailableException(message)
    if kind == ErrorKind.invalid_request:
        return BadRequestException(message)
    return UnprocessableEntityException(message)
