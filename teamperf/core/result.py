"""
Typed results returned by the PerformanceService facade.

OK      the computation succeeded and produced data
EMPTY   the computation succeeded but there was nothing to report
ERROR   the computation failed; data is None and error describes why
"""
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ResultStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


class PerformanceResult(BaseModel, Generic[T]):
    status: ResultStatus
    data: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not ResultStatus.ERROR

    @classmethod
    def success(cls, data: T) -> "PerformanceResult[T]":
        if isinstance(data, list):
            empty = not data
        else:
            empty = bool(getattr(data, "is_empty", False))
        return cls(status=ResultStatus.EMPTY if empty else ResultStatus.OK, data=data)

    @classmethod
    def failure(cls, exc: BaseException) -> "PerformanceResult[T]":
        return cls(status=ResultStatus.ERROR, error=str(exc), error_type=type(exc).__name__)
