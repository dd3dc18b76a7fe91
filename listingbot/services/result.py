from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    cause: Optional[Exception] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown", cause: Optional[Exception] = None) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, cause=cause)

    @staticmethod
    def from_exception(exc: Exception, code: str) -> "Result[T]":
        return Result.failure(str(exc), code, cause=exc)
