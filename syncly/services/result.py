from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode:
    UNKNOWN = "unknown"
    NETWORK = "network_error"
    PLATFORM = "platform_error"
    NOT_CONFIGURED = "not_configured"
    NOT_FOUND = "not_found"


@dataclass
class Result(Generic[T]):
    """Outcome of a call that may fail without raising (platform sends, lookups)."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: Optional[T] = None) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = ErrorCode.UNKNOWN) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
