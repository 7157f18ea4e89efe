"""Trakt.tv client: OAuth token lifecycle plus typed endpoint helpers."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode, urljoin

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from traktkit.backend.common.logging import get_logger
from traktkit.backend.common.tasks import RequestHandle, TaskRunner, TaskSpec
from traktkit.backend.common.types import (
    Completion,
    ErrorKind,
    Failure,
    Result,
    Success,
)
from traktkit.backend.information_handlers.dispatch import (
    CastCrew,
    CommentList,
    DecodeStrategy,
    ObjectList,
    RawList,
    RawMap,
    ResponseDispatcher,
    SingleObject,
    StatusOnly,
    classify_response,
    parse_json,
)
from traktkit.backend.information_handlers.models import (
    Movie,
    SearchResult,
    Show,
    TrendingMovie,
    TrendingShow,
    validation_reason,
)
from traktkit.backend.network_handlers.session import HttpSession, InvalidRequest, NetError
from traktkit.backend.network_handlers.url_manager import RequestBuilder, build_sync_body
from traktkit.backend.persistence.secrets import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    FileSecretStore,
    SecretStore,
    read_text_secret,
)
from traktkit.backend.persistence.sqlite import (
    ACCESS_TOKEN_EXPIRATION_KEY,
    SettingsStore,
    SqliteSettingsStore,
)
from traktkit.config import settings

_SERVICE_NAME = "trakt"
# Ten years; larger lifetimes are treated as a malformed token response.
MAX_EXPIRES_IN = 10 * 365 * 24 * 60 * 60

SignedInObserver = Callable[["Credential"], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthState(str, Enum):
    SIGNED_OUT = "signed_out"
    SIGNED_IN_VALID = "signed_in_valid"
    SIGNED_IN_EXPIRED = "signed_in_expired"


class OAuthToken(BaseModel):
    """Token envelope returned by ``/oauth/token``."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    expires_in: float = Field(ge=0, le=MAX_EXPIRES_IN)
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    created_at: Optional[int] = None


class Credential(BaseModel):
    """Snapshot of the stored OAuth credential."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def signed_in(self) -> bool:
        return self.access_token is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class _RefreshFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Result] = None


class TraktManager:
    """Implements the Trakt OAuth flows and the authorized request helpers."""

    def __init__(
        self,
        *,
        session: Optional[HttpSession] = None,
        secrets: Optional[SecretStore] = None,
        settings_store: Optional[SettingsStore] = None,
        runner: Optional[TaskRunner] = None,
        clock: Optional[Callable[[], datetime]] = None,
        base_url: Optional[str] = None,
        oauth_base_url: Optional[str] = None,
    ) -> None:
        self._log = get_logger(__name__)
        self._session = session or HttpSession()
        self._secrets = secrets if secrets is not None else FileSecretStore()
        self._settings = settings_store if settings_store is not None else SqliteSettingsStore()
        self._runner = runner or TaskRunner()
        self._clock = clock or _utcnow
        self._builder = RequestBuilder(self._secrets, base_url=base_url)
        self._dispatcher = ResponseDispatcher(self._session, self._runner)
        self._oauth_base_url = oauth_base_url or settings.get_oauth_base_url(_SERVICE_NAME)

        self._client_id: Optional[str] = None
        self._client_secret: Optional[str] = None
        self._redirect_uri: Optional[str] = None
        self.oauth_url: Optional[str] = None

        # Serializes writes of the token triple; refreshes are single-flight.
        self._commit_lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._refresh_flight: Optional[_RefreshFlight] = None

        self._observers: List[SignedInObserver] = []
        self._observers_lock = threading.Lock()

        keys = settings.get_trakt_keys()
        if keys.get("client_id") and keys.get("client_secret") and keys.get("redirect_uri"):
            self.configure(keys["client_id"], keys["client_secret"], keys["redirect_uri"])

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def configure(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        """Record the OAuth client configuration; call once before use."""

        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._builder.client_id = client_id

        query = urlencode(
            {"response_type": "code", "client_id": client_id, "redirect_uri": redirect_uri}
        )
        self.oauth_url = f"{self._authorize_url()}?{query}"

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    @property
    def request_builder(self) -> RequestBuilder:
        return self._builder

    @property
    def dispatcher(self) -> ResponseDispatcher:
        return self._dispatcher

    def add_signed_in_observer(self, observer: SignedInObserver) -> None:
        with self._observers_lock:
            self._observers.append(observer)

    def remove_signed_in_observer(self, observer: SignedInObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Credential state
    # ------------------------------------------------------------------
    @property
    def access_token(self) -> Optional[str]:
        return read_text_secret(self._secrets, ACCESS_TOKEN_KEY)

    @access_token.setter
    def access_token(self, value: Optional[str]) -> None:
        self._write_secret(ACCESS_TOKEN_KEY, value)

    @property
    def refresh_token(self) -> Optional[str]:
        return read_text_secret(self._secrets, REFRESH_TOKEN_KEY)

    @refresh_token.setter
    def refresh_token(self, value: Optional[str]) -> None:
        self._write_secret(REFRESH_TOKEN_KEY, value)

    @property
    def expires_at(self) -> Optional[datetime]:
        raw = self._settings.get_value(ACCESS_TOKEN_EXPIRATION_KEY)
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            self._log.warning("Stored Trakt expiration date %r is invalid; ignoring", raw)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @property
    def is_signed_in(self) -> bool:
        return self.access_token is not None

    def credential(self) -> Credential:
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )

    def auth_state(self) -> AuthState:
        if not self.is_signed_in:
            return AuthState.SIGNED_OUT
        if self.needs_refresh():
            return AuthState.SIGNED_IN_EXPIRED
        return AuthState.SIGNED_IN_VALID

    def needs_refresh(self) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return self._clock() >= expires_at

    def sign_out(self) -> None:
        with self._commit_lock:
            self._secrets.delete_secret(ACCESS_TOKEN_KEY)
            self._secrets.delete_secret(REFRESH_TOKEN_KEY)
            self._settings.delete_value(ACCESS_TOKEN_EXPIRATION_KEY)
        self._log.info("Trakt credentials cleared")

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def exchange_authorization_code(
        self,
        code: str,
        completion: Optional[Completion] = None,
    ) -> RequestHandle:
        """Trade an authorization code for tokens; nothing is stored on failure."""

        handle = RequestHandle()

        def _run() -> None:
            try:
                result = self._exchange_token(
                    {"code": code, "grant_type": "authorization_code"},
                    fallback_refresh_token=None,
                )
            except Exception as exc:  # noqa: BLE001 - the continuation must still fire
                self._log.exception("Trakt authorization code exchange crashed")
                result = Failure.of(ErrorKind.UNKNOWN, str(exc), cause=exc)
            if isinstance(result, Success):
                self._log.info("Trakt access token granted via authorization code")
                self._notify_signed_in(result.value)
            handle.deliver(completion, result)

        handle.attach(self._runner.submit(TaskSpec(fn=_run, name="trakt:authorize")))
        return handle

    def exchange_refresh_token(self, completion: Optional[Completion] = None) -> RequestHandle:
        """Mint a new access token from the stored refresh token.

        Concurrent calls share a single token exchange and all receive its result.
        """

        handle = RequestHandle()

        def _run() -> None:
            handle.deliver(completion, self._refresh_single_flight())

        handle.attach(self._runner.submit(TaskSpec(fn=_run, name="trakt:refresh")))
        return handle

    def refresh_if_needed(self, completion: Optional[Completion] = None) -> RequestHandle:
        if self.needs_refresh():
            self._log.debug("Trakt access token expired; refreshing")
            return self.exchange_refresh_token(completion)

        self._log.debug("No need to refresh Trakt access token")
        handle = RequestHandle()
        handle.deliver(completion, Success(self.credential()))
        return handle

    # ------------------------------------------------------------------
    # Generic execution
    # ------------------------------------------------------------------
    def execute(
        self,
        path_or_url: str,
        strategy: DecodeStrategy,
        completion: Optional[Completion] = None,
        *,
        authorization: bool = False,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
        expected_status: int = 200,
    ) -> RequestHandle:
        """Build, send and decode one request against the Trakt API."""

        def _build() -> Optional[requests.Request]:
            if authorization and self.needs_refresh():
                refreshed = self._refresh_single_flight()
                if isinstance(refreshed, Failure):
                    self._log.warning("Trakt token refresh before request failed: %s", refreshed.error.describe())
            return self._builder.build(
                path_or_url,
                authorization=authorization,
                method=method,
                params=params,
                json_body=json_body,
            )

        return self._dispatcher.execute(_build, strategy, completion, expected_status=expected_status)

    # ------------------------------------------------------------------
    # Endpoint helpers
    # ------------------------------------------------------------------
    def get_show(self, show_id: str, completion: Completion, *, extended: Optional[str] = None) -> RequestHandle:
        return self.execute(
            self._endpoint("shows", "summary", id=show_id),
            SingleObject(Show),
            completion,
            params=_extended(extended),
        )

    def get_movie(self, movie_id: str, completion: Completion, *, extended: Optional[str] = None) -> RequestHandle:
        return self.execute(
            self._endpoint("movies", "summary", id=movie_id),
            SingleObject(Movie),
            completion,
            params=_extended(extended),
        )

    def trending_shows(self, completion: Completion, *, page: int = 1, limit: int = 10) -> RequestHandle:
        return self.execute(
            self._endpoint("shows", "trending"),
            ObjectList(TrendingShow),
            completion,
            params={"page": page, "limit": limit},
        )

    def trending_movies(self, completion: Completion, *, page: int = 1, limit: int = 10) -> RequestHandle:
        return self.execute(
            self._endpoint("movies", "trending"),
            ObjectList(TrendingMovie),
            completion,
            params={"page": page, "limit": limit},
        )

    def search(
        self,
        query: str,
        completion: Completion,
        *,
        media_type: Optional[str] = None,
        year: Optional[int] = None,
    ) -> RequestHandle:
        params: Dict[str, Any] = {"query": query}
        if media_type:
            params["type"] = media_type
        if year is not None:
            params["year"] = year
        return self.execute(self._endpoint("search", "query"), ObjectList(SearchResult), completion, params=params)

    def get_show_people(self, show_id: str, completion: Completion) -> RequestHandle:
        return self.execute(self._endpoint("shows", "people", id=show_id), CastCrew(), completion)

    def get_movie_people(self, movie_id: str, completion: Completion) -> RequestHandle:
        return self.execute(self._endpoint("movies", "people", id=movie_id), CastCrew(), completion)

    def get_show_comments(self, show_id: str, completion: Completion) -> RequestHandle:
        return self.execute(self._endpoint("shows", "comments", id=show_id), CommentList(), completion)

    def get_stats(self, completion: Completion, *, username: str = "me") -> RequestHandle:
        return self.execute(
            self._endpoint("users", "stats", username=username),
            RawMap(),
            completion,
            authorization=username == "me",
        )

    def get_user_lists(self, completion: Completion, *, username: str = "me") -> RequestHandle:
        return self.execute(
            self._endpoint("users", "lists", username=username),
            RawList(),
            completion,
            authorization=username == "me",
        )

    def add_to_history(
        self,
        completion: Completion,
        *,
        movies: Sequence[Mapping[str, Any]] = (),
        shows: Sequence[Mapping[str, Any]] = (),
        episodes: Sequence[Mapping[str, Any]] = (),
    ) -> RequestHandle:
        return self.execute(
            self._endpoint("sync", "history"),
            StatusOnly(),
            completion,
            authorization=True,
            method="POST",
            json_body=build_sync_body(movies, shows, episodes),
            expected_status=201,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        self._runner.close(wait=True)
        self._session.close()

    def __enter__(self) -> "TraktManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _refresh_single_flight(self) -> Result:
        with self._refresh_lock:
            flight = self._refresh_flight
            leader = flight is None
            if leader:
                flight = self._refresh_flight = _RefreshFlight()

        if not leader:
            self._log.debug("Joining in-flight Trakt token refresh")
            flight.done.wait()
            return flight.result

        try:
            result = self._refresh_now()
        except Exception as exc:  # noqa: BLE001 - followers must still be released
            self._log.exception("Trakt token refresh crashed")
            result = Failure.of(ErrorKind.UNKNOWN, str(exc), cause=exc)
        finally:
            with self._refresh_lock:
                self._refresh_flight = None
        flight.result = result
        flight.done.set()
        return result

    def _refresh_now(self) -> Result:
        refresh_token = self.refresh_token
        if not refresh_token:
            return Failure.of(ErrorKind.CONFIGURATION_MISSING, "No Trakt refresh token stored")

        result = self._exchange_token(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            fallback_refresh_token=refresh_token,
        )
        if isinstance(result, Success):
            self._log.info("Trakt access token refreshed")
        else:
            self._log.warning("Trakt token refresh failed: %s", result.error.describe())
        return result

    def _exchange_token(
        self,
        grant: Mapping[str, str],
        *,
        fallback_refresh_token: Optional[str],
    ) -> Result:
        missing = self._missing_configuration()
        if missing:
            return Failure.of(
                ErrorKind.CONFIGURATION_MISSING,
                f"Trakt client is not configured: missing {', '.join(missing)}",
            )

        body = {
            **grant,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self._redirect_uri,
        }
        request = self._builder.build(self._token_url(), authorization=False, method="POST", json_body=body)
        if request is None:
            return Failure.of(ErrorKind.REQUEST_CONSTRUCTION, "Could not build Trakt token request")

        try:
            response = self._session.perform(request)
        except InvalidRequest as exc:
            return Failure.of(ErrorKind.REQUEST_CONSTRUCTION, str(exc), cause=exc)
        except NetError as exc:
            return Failure.of(ErrorKind.TRANSPORT, str(exc), cause=exc)

        classified = classify_response(response, 200)
        if isinstance(classified, Failure):
            return classified
        parsed = parse_json(classified.value)
        if isinstance(parsed, Failure):
            return parsed
        if not isinstance(parsed.value, Mapping):
            return Failure.of(ErrorKind.DECODE, "Token response was not a JSON object")

        try:
            token = OAuthToken.model_validate(parsed.value)
        except ValidationError as exc:
            return Failure.of(
                ErrorKind.OBJECT_CONSTRUCTION,
                f"Invalid token response: {validation_reason(exc)}",
                cause=exc,
            )

        credential = Credential(
            access_token=token.access_token,
            refresh_token=token.refresh_token or fallback_refresh_token,
            expires_at=self._clock() + timedelta(seconds=token.expires_in),
        )
        return self._commit(credential)

    def _commit(self, credential: Credential) -> Result:
        """Store the token triple as a unit, restoring the previous values on failure."""

        with self._commit_lock:
            previous: List[Tuple[str, Optional[bytes]]] = [
                (ACCESS_TOKEN_KEY, self._secrets.get_secret(ACCESS_TOKEN_KEY)),
                (REFRESH_TOKEN_KEY, self._secrets.get_secret(REFRESH_TOKEN_KEY)),
            ]
            previous_expiry = self._settings.get_value(ACCESS_TOKEN_EXPIRATION_KEY)

            try:
                stored = self._write_secret(ACCESS_TOKEN_KEY, credential.access_token)
                stored = stored and self._write_secret(REFRESH_TOKEN_KEY, credential.refresh_token)
                if stored:
                    self._settings.set_value(
                        ACCESS_TOKEN_EXPIRATION_KEY,
                        credential.expires_at.isoformat(),
                    )
            except (sqlite3.Error, OSError) as exc:
                self._log.error("Persisting Trakt credentials failed: %s", exc)
                stored = False

            if not stored:
                for name, value in previous:
                    if value is None:
                        self._secrets.delete_secret(name)
                    else:
                        self._secrets.set_secret(name, value)
                if previous_expiry is not None:
                    self._settings.set_value(ACCESS_TOKEN_EXPIRATION_KEY, previous_expiry)
                return Failure.of(ErrorKind.STORAGE, "Could not persist Trakt credentials")

        return Success(credential)

    def _write_secret(self, name: str, value: Optional[str]) -> bool:
        if value is None:
            self._secrets.delete_secret(name)
            return True
        return self._secrets.set_secret(name, value.encode("utf-8"))

    def _notify_signed_in(self, credential: Credential) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(credential)
            except Exception:  # noqa: BLE001 - one observer must not break the others
                self._log.exception("Signed-in observer %r failed", observer)

    def _missing_configuration(self) -> List[str]:
        missing = []
        if not self._client_id:
            missing.append("client_id")
        if not self._client_secret:
            missing.append("client_secret")
        if not self._redirect_uri:
            missing.append("redirect_uri")
        return missing

    def _token_url(self) -> str:
        return urljoin(_with_slash(self._oauth_base_url), settings.get_endpoint("oauth", "token"))

    def _authorize_url(self) -> str:
        return urljoin(_with_slash(self._oauth_base_url), settings.get_endpoint("oauth", "authorize"))

    def _endpoint(self, group: str, name: str, **fmt: Any) -> str:
        return settings.get_endpoint(group, name).format(**fmt)


def _extended(value: Optional[str]) -> Optional[Dict[str, str]]:
    return {"extended": value} if value else None


def _with_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


__all__ = [
    "AuthState",
    "Credential",
    "OAuthToken",
    "TraktManager",
]
