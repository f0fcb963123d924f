"""
Base Request/Response Schemas - dùng chung cho các service và API
"""

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from ..core.enums import ErrorKind

DataT = TypeVar("DataT")


class OperationResult(BaseModel, Generic[DataT]):
    """Kết quả trả về từ các entry point orchestration.

    Service không ném exception ra ngoài: thành công mang ``data``,
    thất bại mang ``error_kind`` + ``message``.
    """

    success: bool
    data: Optional[DataT] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def ok(cls, data: Optional[DataT] = None, message: str = "Success"):
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str):
        return cls(success=False, error_kind=kind, message=message)


class HealthResponse(BaseModel):
    """Phản hồi kiểm tra sức khỏe dịch vụ."""

    status: str
    version: str
    message: str


class SuccessResponse(BaseModel, Generic[DataT]):
    """Generic success response wrapper for single item"""

    success: bool = True
    message: str = "Success"
    data: DataT


class ListResponse(BaseModel, Generic[DataT]):
    """Generic list response wrapper"""

    success: bool = True
    message: str = "Success"
    data: List[DataT]
    total: int = Field(..., description="Total number of items")
