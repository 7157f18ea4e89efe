from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence
from urllib.parse import urljoin, urlparse

import requests

from traktkit.backend.common.logging import get_logger
from traktkit.backend.persistence.secrets import (
    ACCESS_TOKEN_KEY,
    SecretStore,
    read_text_secret,
)
from traktkit.config import settings

log = get_logger(__name__)

API_VERSION = "2"


class RequestBuilder:
    """
    Builds outbound Trakt requests without doing any network I/O.

    - bare resource paths are joined onto the API base URL
    - every request carries the JSON content type and API version headers
    - ``trakt-api-key`` is added once a client id is configured
    - authorized requests carry ``Authorization: Bearer <token>``; when no
      access token is stored the builder returns ``None`` instead of raising
    """

    def __init__(
        self,
        secrets: SecretStore,
        *,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> None:
        self._secrets = secrets
        self.base_url = _ensure_trailing_slash(base_url or settings.get_base_url("trakt"))
        self.client_id = client_id

    # -------- Public API --------

    def build(
        self,
        path_or_url: str,
        *,
        authorization: bool,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Optional[requests.Request]:
        url = self.resolve_url(path_or_url)
        if url is None:
            log.debug("Rejecting unparseable Trakt URL %r", path_or_url)
            return None

        headers = self.base_headers()
        if authorization:
            access_token = read_text_secret(self._secrets, ACCESS_TOKEN_KEY)
            if not access_token:
                log.debug("No Trakt access token stored; cannot authorize %s %s", method, url)
                return None
            headers["Authorization"] = f"Bearer {access_token}"

        return requests.Request(
            method=method.upper(),
            url=url,
            headers=headers,
            params=dict(params or {}),
            json=json_body,
        )

    def base_headers(self) -> Dict[str, str]:
        headers = dict(settings.get_default_headers("trakt"))
        headers.setdefault("Content-Type", "application/json")
        headers["trakt-api-version"] = API_VERSION
        if self.client_id:
            headers["trakt-api-key"] = self.client_id
        return headers

    def resolve_url(self, path_or_url: str) -> Optional[str]:
        if not path_or_url:
            return None
        try:
            if "://" in path_or_url:
                url = path_or_url
            else:
                url = urljoin(self.base_url, path_or_url.lstrip("/"))
            parsed = urlparse(url)
            port = parsed.port
        except ValueError:
            return None
        if parsed.scheme not in {"http", "https"} or not parsed.netloc or port == 0:
            return None
        if any(ch.isspace() for ch in url):
            return None
        return url


def build_sync_body(
    movies: Sequence[Mapping[str, Any]] = (),
    shows: Sequence[Mapping[str, Any]] = (),
    episodes: Sequence[Mapping[str, Any]] = (),
) -> Dict[str, Any]:
    """Body shape shared by the sync collection/history/watchlist endpoints."""

    return {
        "movies": [dict(m) for m in movies],
        "shows": [dict(s) for s in shows],
        "episodes": [dict(e) for e in episodes],
    }


# ----------------------------
# Helpers
# ----------------------------

def _ensure_trailing_slash(u: str) -> str:
    return u if u.endswith("/") else (u + "/")
