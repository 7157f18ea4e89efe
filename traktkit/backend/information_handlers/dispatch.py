"""Response classification and payload decoding for Trakt calls.

Every call follows the same pipeline:

* the request goes out over the shared :class:`HttpSession`
* the exchange is classified (transport error, unexpected status, empty body,
  unparsable JSON) before anything is decoded
* the parsed JSON is shaped by a :class:`DecodeStrategy` chosen by the caller
* the caller's continuation receives exactly one :class:`Result`

List payloads decode leniently: an element that cannot be turned into its
model is dropped and the rest of the list is kept.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

import requests
from pydantic import BaseModel, Field, ValidationError

from traktkit.backend.common.logging import get_logger
from traktkit.backend.common.tasks import RequestHandle, TaskRunner, TaskSpec
from traktkit.backend.common.types import (
    Completion,
    ErrorKind,
    Failure,
    Result,
    Success,
)
from traktkit.backend.information_handlers.models import (
    CastAndCrew,
    CastMember,
    Comment,
    CrewMember,
    TraktModel,
    init_each,
    validation_reason,
)
from traktkit.backend.network_handlers.session import (
    HttpSession,
    InvalidRequest,
    NetError,
    describe_status,
)

log = get_logger(__name__)

CREW_DEPARTMENTS = ("production", "writing", "crew", "camera", "sound")

RequestSource = Union[Optional[requests.Request], Callable[[], Optional[requests.Request]]]


# ------------------------------------------------------------------
# Decode strategies
# ------------------------------------------------------------------
class DecodeStrategy:
    """Turns parsed JSON into the payload family a caller asked for."""

    parses_body = True

    def decode(self, payload: Any) -> Result:
        raise NotImplementedError


@dataclass(frozen=True)
class SingleObject(DecodeStrategy):
    model: Type[TraktModel]

    def decode(self, payload: Any) -> Result:
        if not isinstance(payload, Mapping):
            return Failure.of(ErrorKind.DECODE, f"Expected a JSON object for {self.model.__name__}")
        try:
            return Success(self.model.from_json(payload))
        except ValidationError as exc:
            return Failure.of(
                ErrorKind.OBJECT_CONSTRUCTION,
                f"Could not build {self.model.__name__}: {validation_reason(exc)}",
                cause=exc,
            )


@dataclass(frozen=True)
class ObjectList(DecodeStrategy):
    model: Type[TraktModel]

    def decode(self, payload: Any) -> Result:
        if not isinstance(payload, list):
            return Failure.of(ErrorKind.DECODE, f"Expected a JSON array of {self.model.__name__}")
        objects = init_each(self.model, payload)
        dropped = len(payload) - len(objects)
        if dropped:
            log.debug("Dropped %d malformed %s entries", dropped, self.model.__name__)
        return Success(objects)


@dataclass(frozen=True)
class RawMap(DecodeStrategy):
    def decode(self, payload: Any) -> Result:
        if not isinstance(payload, dict):
            return Failure.of(ErrorKind.DECODE, "Expected a JSON object")
        return Success(payload)


@dataclass(frozen=True)
class RawList(DecodeStrategy):
    def decode(self, payload: Any) -> Result:
        if not isinstance(payload, list):
            return Failure.of(ErrorKind.DECODE, "Expected a JSON array")
        return Success(payload)


@dataclass(frozen=True)
class CommentList(DecodeStrategy):
    def decode(self, payload: Any) -> Result:
        return ObjectList(Comment).decode(payload)


@dataclass(frozen=True)
class CastCrew(DecodeStrategy):
    def decode(self, payload: Any) -> Result:
        if not isinstance(payload, Mapping):
            return Failure.of(ErrorKind.DECODE, "Expected a JSON object with cast and crew")

        cast: List[CastMember] = []
        members = payload.get("cast")
        if isinstance(members, list):
            cast = init_each(CastMember, members)

        crew: List[CrewMember] = []
        departments = payload.get("crew")
        if isinstance(departments, Mapping):
            for department in CREW_DEPARTMENTS:
                members = departments.get(department)
                if not isinstance(members, list):
                    continue
                tagged = [
                    {**entry, "department": entry.get("department") or department}
                    if isinstance(entry, Mapping)
                    else entry
                    for entry in members
                ]
                crew.extend(init_each(CrewMember, tagged))

        return Success(CastAndCrew(cast=cast, crew=crew))


@dataclass(frozen=True)
class StatusOnly(DecodeStrategy):
    """Success once the status and body checks pass; the body is not parsed."""

    parses_body = False

    def decode(self, payload: Any) -> Result:
        return Success(None)


# ------------------------------------------------------------------
# Response metadata
# ------------------------------------------------------------------
@dataclass
class RateLimitInfo:
    limit: Optional[int]
    remaining: Optional[int]
    reset_at: Optional[datetime]


class PaginationDetails(BaseModel):
    """Metadata describing a paginated Trakt response."""

    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    page_count: Optional[int] = Field(default=None, ge=0)
    item_count: Optional[int] = Field(default=None, ge=0)

    @property
    def has_next(self) -> bool:
        return self.page_count is not None and self.page < self.page_count


# ------------------------------------------------------------------
# Classifier
# ------------------------------------------------------------------
def classify_response(response: Any, expected_status: int) -> Result:
    """Check status and body of a completed exchange; succeed with the raw body."""

    status = getattr(response, "status_code", None)
    if status is None:
        return Failure.of(ErrorKind.UNKNOWN, "Response carried no HTTP status")
    if status != expected_status:
        return Failure.of(ErrorKind.HTTP_STATUS, describe_status(status), status_code=status)

    body = getattr(response, "content", None)
    if not body:
        return Failure.of(ErrorKind.EMPTY_BODY, "No data returned", status_code=status)

    return Success(body)


def parse_json(body: bytes) -> Result:
    try:
        return Success(json.loads(body))
    except (ValueError, UnicodeDecodeError) as exc:
        return Failure.of(ErrorKind.DECODE, f"Invalid JSON: {exc}", cause=exc)


class ResponseDispatcher:
    """Runs Trakt requests and delivers decoded results to continuations."""

    def __init__(self, session: Optional[HttpSession] = None, runner: Optional[TaskRunner] = None) -> None:
        self._session = session or HttpSession()
        self._runner = runner or TaskRunner()
        self._rate_limit: Optional[RateLimitInfo] = None
        self._pagination: Optional[PaginationDetails] = None

    # -------- public API --------

    def execute(
        self,
        request: RequestSource,
        strategy: DecodeStrategy,
        completion: Optional[Completion],
        *,
        expected_status: int = 200,
    ) -> RequestHandle:
        """Schedule ``request`` and return immediately.

        ``request`` may also be a zero-argument callable that builds the
        request on the worker thread; returning ``None`` from it counts as a
        request-construction failure.
        """

        handle = RequestHandle()

        def _run() -> None:
            if handle.cancelled:
                return
            try:
                resolved = request() if callable(request) else request
            except Exception as exc:  # noqa: BLE001 - reported through the continuation
                log.exception("Building Trakt request failed")
                handle.deliver(completion, Failure.of(ErrorKind.REQUEST_CONSTRUCTION, str(exc), cause=exc))
                return
            try:
                result = self.execute_sync(resolved, strategy, expected_status=expected_status)
            except Exception as exc:  # noqa: BLE001 - the continuation must still fire
                log.exception("Trakt request crashed")
                result = Failure.of(ErrorKind.UNKNOWN, str(exc), cause=exc)
            handle.deliver(completion, result)

        future = self._runner.submit(TaskSpec(fn=_run, name=f"trakt:{type(strategy).__name__}"))
        handle.attach(future)
        return handle

    def execute_sync(
        self,
        request: Optional[requests.Request],
        strategy: DecodeStrategy,
        *,
        expected_status: int = 200,
    ) -> Result:
        if request is None:
            return Failure.of(
                ErrorKind.REQUEST_CONSTRUCTION,
                "Request could not be built (missing access token or invalid URL)",
            )

        try:
            response = self._session.perform(request)
        except InvalidRequest as exc:
            log.warning("Trakt request %s %s rejected: %s", request.method, request.url, exc)
            return Failure.of(ErrorKind.REQUEST_CONSTRUCTION, str(exc), cause=exc)
        except NetError as exc:
            log.warning("Trakt transport error for %s %s: %s", request.method, request.url, exc)
            return Failure.of(ErrorKind.TRANSPORT, str(exc), cause=exc)

        classified = classify_response(response, expected_status)
        if isinstance(classified, Failure):
            log.debug("Trakt %s %s failed: %s", request.method, request.url, classified.error.describe())
            return classified

        self._record_metadata(response)
        if not strategy.parses_body:
            return strategy.decode(None)

        parsed = parse_json(classified.value)
        if isinstance(parsed, Failure):
            return parsed

        return strategy.decode(parsed.value)

    @property
    def rate_limit(self) -> Optional[RateLimitInfo]:
        """Rate limit headers from the most recent successful response."""

        return self._rate_limit

    @property
    def last_pagination(self) -> Optional[PaginationDetails]:
        return self._pagination

    # -------- internals --------

    def _record_metadata(self, response: Any) -> None:
        headers: Mapping[str, Any] = getattr(response, "headers", None) or {}
        self._rate_limit = _extract_rate_limit(headers)
        self._pagination = _extract_pagination(headers)


def _try_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _extract_rate_limit(headers: Mapping[str, Any]) -> Optional[RateLimitInfo]:
    limit = _try_int(headers.get("X-RateLimit-Limit"))
    remaining = _try_int(headers.get("X-RateLimit-Remaining"))
    reset = _try_int(headers.get("X-RateLimit-Reset"))
    if limit is None and remaining is None and reset is None:
        return None
    reset_at = datetime.fromtimestamp(reset, tz=timezone.utc) if reset is not None else None

    return RateLimitInfo(limit=limit, remaining=remaining, reset_at=reset_at)


def _extract_pagination(headers: Mapping[str, Any]) -> Optional[PaginationDetails]:
    page = _try_int(headers.get("X-Pagination-Page"))
    limit = _try_int(headers.get("X-Pagination-Limit"))
    if page is None or limit is None or page < 1 or limit < 1:
        return None
    values: Dict[str, Any] = {
        "page": page,
        "limit": limit,
        "page_count": _try_int(headers.get("X-Pagination-Page-Count")),
        "item_count": _try_int(headers.get("X-Pagination-Item-Count")),
    }
    try:
        return PaginationDetails.model_validate(values)
    except ValidationError:
        return None


__all__ = [
    "CREW_DEPARTMENTS",
    "CastCrew",
    "CommentList",
    "DecodeStrategy",
    "ObjectList",
    "PaginationDetails",
    "RateLimitInfo",
    "RawList",
    "RawMap",
    "ResponseDispatcher",
    "SingleObject",
    "StatusOnly",
    "classify_response",
    "parse_json",
]
