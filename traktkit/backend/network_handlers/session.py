from __future__ import annotations

from typing import Optional
import socket

import requests
from requests.adapters import HTTPAdapter

from traktkit.backend.common.errors import NetworkError
from traktkit.backend.common.logging import get_logger
from traktkit.config import settings

log = get_logger(__name__)


# ---------------- Exceptions ----------------

class NetError(NetworkError): ...
class TimeoutError(NetError): ...
class DNSFailure(NetError): ...
class ConnectionFailed(NetError): ...
class InvalidRequest(NetError): ...


_STATUS_REASONS = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Found",
    409: "Conflict",
    412: "Precondition Failed",
    422: "Unprocessable Entity",
    429: "Rate Limit Exceeded",
    500: "Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    520: "Service Unavailable - Cloudflare error",
    521: "Service Unavailable - Cloudflare error",
    522: "Service Unavailable - Cloudflare error",
}


def describe_status(status: int) -> str:
    reason = _STATUS_REASONS.get(status)
    if reason:
        return f"{status} {reason}"
    if 500 <= status < 600:
        return f"{status} Upstream error"

    return f"{status} HTTP error"


_INVALID_REQUEST_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.URLRequired,
)


def _caused_by_dns(exc: BaseException) -> bool:
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        linked = (current.__cause__, current.__context__, getattr(current, "reason", None), *current.args)
        pending.extend(item for item in linked if isinstance(item, BaseException))

    return False


def _map_transport_error(exc: requests.RequestException) -> NetError:
    if isinstance(exc, _INVALID_REQUEST_ERRORS):
        return InvalidRequest(str(exc))
    if isinstance(exc, requests.exceptions.Timeout):
        return TimeoutError(str(exc))
    if isinstance(exc, requests.exceptions.ConnectionError):
        if _caused_by_dns(exc):
            return DNSFailure(str(exc))
        return ConnectionFailed(str(exc))

    return NetError(str(exc))


# ---------------- Main Session ----------------


class HttpSession:
    """
    Shared HTTP transport for every Trakt call:
      - one pooled ``requests.Session`` per client
      - a single attempt per request; callers decide about retries
      - connection-level failures surface as ``NetError`` subclasses
    """

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout or settings.get_timeout("trakt")

        self._session = requests.Session()
        self._session.mount("http://", HTTPAdapter(pool_connections=8, pool_maxsize=16))
        self._session.mount("https://", HTTPAdapter(pool_connections=8, pool_maxsize=16))

    def perform(self, request: requests.Request) -> requests.Response:
        try:
            prepared = self._session.prepare_request(request)
        except requests.RequestException as exc:
            raise _map_transport_error(exc) from exc
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from exc

        log.debug("HTTP %s %s", prepared.method, prepared.url)
        try:
            return self._session.send(prepared, timeout=self.timeout)
        except requests.RequestException as exc:
            raise _map_transport_error(exc) from exc

    def close(self) -> None:
        self._session.close()
