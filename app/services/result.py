from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# HTTP status used by routers when an operation result is a failure.
ERROR_STATUS_CODES = {
    "not_found": 404,
    "forbidden": 403,
    "already_assigned": 409,
    "invalid_operator": 400,
    "invalid_status": 400,
}


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    @property
    def status_code(self) -> int:
        if self.ok:
            return 200
        return ERROR_STATUS_CODES.get(self.error_code or "", 400)
