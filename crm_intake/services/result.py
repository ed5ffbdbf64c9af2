from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# User-visible failure classes
EXPIRED_SESSION = "expired_session"
NOT_OWNER = "not_owner"
PREREQUISITE_FAILED = "prerequisite_failed"
RESUME_FAILED = "resume_failed"
CRM_ERROR = "crm_error"
CLASSIFIER_ERROR = "classifier_error"
INVALID_STATE = "invalid_state"


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

    @staticmethod
    def from_exception(exc: Exception, code: str) -> "Result[T]":
        return Result(ok=False, error=str(exc) or exc.__class__.__name__, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
