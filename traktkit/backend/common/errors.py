from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from traktkit.backend.common.types import ErrorDetail


class TraktKitError(Exception):
    """Base for all traktkit exceptions."""


class ConfigError(TraktKitError):
    """Client configuration is missing or invalid."""


class TaskError(TraktKitError):
    """Task scheduling/execution issues."""


class NetworkError(TraktKitError):
    """Network/HTTP layer issues."""


class ProviderError(TraktKitError):
    """A Trakt call completed with a classified failure."""

    def __init__(self, detail: "ErrorDetail") -> None:
        super().__init__(detail.describe())
        self.detail = detail

    @property
    def status_code(self) -> Optional[int]:
        return self.detail.status_code
