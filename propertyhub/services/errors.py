# propertyhub/services/errors.py
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class StoreError(Exception):
    """Base class for every failure the location store can report."""

    code = "store_error"

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.cause = cause

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(StoreError):
    """Requested entity or parent id has no corresponding document."""

    code = "not_found"


class StoreUnavailable(StoreError):
    """Connectivity or server failure during a CRUD call or subscription."""

    code = "store_unavailable"


class ValidationFailure(StoreError):
    """Operation would violate the placement or containment rules."""

    code = "validation_failure"


class SubscriptionError(StoreError):
    """A live subscription terminated abnormally."""

    code = "subscription_error"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure value returned by every store and repository mutation."""

    value: Optional[T] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: StoreError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Returns the value or raises the carried error."""
        if self.error is not None:
            raise self.error
        return self.value
