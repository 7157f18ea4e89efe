"""Result variant shared by every Trakt call.

A completed call is either :class:`Success` carrying the decoded payload or
:class:`Failure` carrying an :class:`ErrorDetail`.  Both are immutable and only
one arm ever exists for a given call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Literal, Optional, TypeVar, Union

from traktkit.backend.common.errors import ProviderError


LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFIGURATION_MISSING = "configuration_missing"
    REQUEST_CONSTRUCTION = "request_construction"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    EMPTY_BODY = "empty_body"
    DECODE = "decode"
    OBJECT_CONSTRUCTION = "object_construction"
    STORAGE = "storage"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorDetail:
    kind: ErrorKind
    message: str = ""
    status_code: Optional[int] = None
    cause: Optional[BaseException] = None

    def describe(self) -> str:
        text = self.message or self.kind.value.replace("_", " ")
        if self.status_code is not None and str(self.status_code) not in text:
            text = f"{text} ({self.status_code})"
        return f"Trakt request failed: {text}"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    error: ErrorDetail

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise ProviderError(self.error)

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> "Failure":
        return cls(ErrorDetail(kind=kind, message=message, status_code=status_code, cause=cause))


Result = Union[Success[T], Failure]

Completion = Callable[[Result[T]], None]
