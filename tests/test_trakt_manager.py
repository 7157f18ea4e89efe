import logging
import time
from datetime import timedelta

import pytest

from traktkit.backend.common.errors import ConfigError
from traktkit.backend.common.types import ErrorKind, Failure, Success
from traktkit.backend.information_handlers.models import Show, TrendingMovie, TrendingShow
from traktkit.backend.information_handlers.trakt_manager import (
    MAX_EXPIRES_IN,
    AuthState,
    Credential,
    TraktManager,
)
from traktkit.backend.network_handlers.session import TimeoutError as TransportTimeout
from traktkit.backend.persistence.secrets import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, MemorySecretStore
from traktkit.backend.persistence.sqlite import ACCESS_TOKEN_EXPIRATION_KEY
from traktkit.config import settings

from conftest import CLIENT_ID, CLIENT_SECRET, REDIRECT_URI, WAIT, Collector, make_response

TOKEN_URL = "https://trakt.example.test/oauth/token"


def _token_payload(access="a", refresh="b", expires_in=3600):
    payload = {"access_token": access, "expires_in": expires_in, "token_type": "bearer"}
    if refresh is not None:
        payload["refresh_token"] = refresh
    return payload


def _sign_in(secrets, settings_store, clock, *, access="old", refresh="r1", expires_in=3600):
    secrets.set_secret(ACCESS_TOKEN_KEY, access.encode())
    secrets.set_secret(REFRESH_TOKEN_KEY, refresh.encode())
    settings_store.set_value(ACCESS_TOKEN_EXPIRATION_KEY, (clock() + timedelta(seconds=expires_in)).isoformat())


def _wait_for_log(caplog, fragment, timeout=WAIT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if any(fragment in record.getMessage() for record in caplog.records):
            return True
        time.sleep(0.01)
    return False


class RefusingSecretStore(MemorySecretStore):
    """Accepts access tokens but refuses to store refresh tokens."""

    def set_secret(self, name, value):
        if name == REFRESH_TOKEN_KEY and value != b"r1":
            return False
        return super().set_secret(name, value)


@pytest.fixture
def unconfigured(monkeypatch, session, secrets, settings_store, runner, clock):
    monkeypatch.setattr(
        "traktkit.config.settings.get_trakt_keys",
        lambda: {"client_id": None, "client_secret": None, "redirect_uri": None},
    )
    return TraktManager(
        session=session,
        secrets=secrets,
        settings_store=settings_store,
        runner=runner,
        clock=clock,
        base_url="https://api.example.test/",
        oauth_base_url="https://trakt.example.test/",
    )


class TestAuthorize:
    def test_success_stores_tokens_and_expiry(self, manager, session, secrets, clock, collector):
        observed = []
        manager.add_signed_in_observer(observed.append)
        session.queue(make_response(200, _token_payload()))

        manager.exchange_authorization_code("code-1", collector)

        result = collector.result
        assert isinstance(result, Success)
        assert secrets.get_secret(ACCESS_TOKEN_KEY) == b"a"
        assert secrets.get_secret(REFRESH_TOKEN_KEY) == b"b"
        assert manager.expires_at == clock() + timedelta(seconds=3600)
        assert result.value.access_token == "a"
        assert [credential.access_token for credential in observed] == ["a"]

    def test_token_request_shape(self, manager, session, collector):
        session.queue(make_response(200, _token_payload()))

        manager.exchange_authorization_code("code-1", collector)
        collector.result

        (request,) = session.requests
        assert request.method == "POST"
        assert request.url == TOKEN_URL
        assert request.headers["trakt-api-key"] == CLIENT_ID
        assert "Authorization" not in request.headers
        assert request.json == {
            "code": "code-1",
            "grant_type": "authorization_code",
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "redirect_uri": REDIRECT_URI,
        }

    def test_expiry_boundary(self, manager, session, clock, collector):
        session.queue(make_response(200, _token_payload()))
        manager.exchange_authorization_code("code-1", collector)
        collector.result

        assert manager.needs_refresh() is False
        assert manager.auth_state() is AuthState.SIGNED_IN_VALID
        clock.advance(3599)
        assert manager.needs_refresh() is False
        clock.advance(1)
        assert manager.needs_refresh() is True
        assert manager.auth_state() is AuthState.SIGNED_IN_EXPIRED

    def test_rejected_code_changes_nothing(self, manager, session, secrets, settings_store, collector):
        observed = []
        manager.add_signed_in_observer(observed.append)
        session.queue(make_response(401, {"error": "invalid_grant"}))

        manager.exchange_authorization_code("bad", collector)

        result = collector.result
        assert isinstance(result, Failure)
        assert result.error.kind is ErrorKind.HTTP_STATUS
        assert result.error.status_code == 401
        assert secrets.get_secret(ACCESS_TOKEN_KEY) is None
        assert settings_store.get_value(ACCESS_TOKEN_EXPIRATION_KEY) is None
        assert observed == []

    def test_token_response_without_expiry_is_rejected(self, manager, session, secrets, collector):
        session.queue(make_response(200, {"access_token": "a", "refresh_token": "b"}))

        manager.exchange_authorization_code("code-1", collector)

        result = collector.result
        assert result.error.kind is ErrorKind.OBJECT_CONSTRUCTION
        assert "expires_in" in result.error.message
        assert secrets.get_secret(ACCESS_TOKEN_KEY) is None

    def test_absurd_token_lifetime_is_rejected(self, manager, session, secrets, collector):
        session.queue(make_response(200, _token_payload(expires_in=1e12)))

        manager.exchange_authorization_code("code-1", collector)

        result = collector.result
        assert result.error.kind is ErrorKind.OBJECT_CONSTRUCTION
        assert "expires_in" in result.error.message
        assert secrets.get_secret(ACCESS_TOKEN_KEY) is None

    def test_longest_accepted_token_lifetime(self, manager, session, clock, collector):
        session.queue(make_response(200, _token_payload(expires_in=MAX_EXPIRES_IN)))

        manager.exchange_authorization_code("code-1", collector)

        assert collector.result.value.expires_at == clock() + timedelta(seconds=MAX_EXPIRES_IN)

    def test_unexpected_error_still_reaches_continuation(self, manager, session, collector):
        def broken_clock():
            raise RuntimeError("clock unavailable")

        manager._clock = broken_clock
        session.queue(make_response(200, _token_payload()))

        manager.exchange_authorization_code("code-1", collector)

        result = collector.result
        assert result.error.kind is ErrorKind.UNKNOWN
        assert not manager.is_signed_in

    def test_transport_failure(self, manager, session, collector):
        session.queue(TransportTimeout("timed out"))

        manager.exchange_authorization_code("code-1", collector)

        assert collector.result.error.kind is ErrorKind.TRANSPORT
        assert not manager.is_signed_in

    def test_unconfigured_client_never_hits_network(self, unconfigured, session, collector):
        unconfigured.exchange_authorization_code("code-1", collector)

        result = collector.result
        assert result.error.kind is ErrorKind.CONFIGURATION_MISSING
        assert "client_id" in result.error.message
        assert session.requests == []
        assert unconfigured.oauth_url is None

    def test_failing_observer_does_not_block_others(self, manager, session, collector):
        seen = []

        def broken(_credential):
            raise RuntimeError("observer bug")

        manager.add_signed_in_observer(broken)
        manager.add_signed_in_observer(seen.append)
        session.queue(make_response(200, _token_payload()))

        manager.exchange_authorization_code("code-1", collector)

        assert isinstance(collector.result, Success)
        assert len(seen) == 1

    def test_removed_observer_is_not_called(self, manager, session, collector):
        seen = []
        manager.add_signed_in_observer(seen.append)
        manager.remove_signed_in_observer(seen.append)
        session.queue(make_response(200, _token_payload()))

        manager.exchange_authorization_code("code-1", collector)
        collector.result

        assert seen == []


class TestRefresh:
    def test_refresh_replaces_tokens(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        clock.advance(7200)
        session.queue(make_response(200, _token_payload("new", "r2", 7200)))

        manager.exchange_refresh_token(collector)

        result = collector.result
        assert isinstance(result, Success)
        assert manager.access_token == "new"
        assert manager.refresh_token == "r2"
        assert manager.expires_at == clock() + timedelta(seconds=7200)
        assert session.requests[0].json["grant_type"] == "refresh_token"
        assert session.requests[0].json["refresh_token"] == "r1"

    def test_refresh_without_new_refresh_token_keeps_old_one(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        session.queue(make_response(200, _token_payload("new", refresh=None)))

        manager.exchange_refresh_token(collector)

        assert collector.result.value.refresh_token == "r1"
        assert manager.refresh_token == "r1"
        assert manager.access_token == "new"

    def test_failed_refresh_leaves_credentials_untouched(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        before = manager.credential()
        session.queue(make_response(400, body=b""))

        manager.exchange_refresh_token(collector)

        result = collector.result
        assert result.error.kind is ErrorKind.HTTP_STATUS
        assert result.error.status_code == 400
        assert manager.credential() == before

    def test_missing_refresh_token_skips_network(self, manager, session, collector):
        manager.exchange_refresh_token(collector)

        assert collector.result.error.kind is ErrorKind.CONFIGURATION_MISSING
        assert session.requests == []

    def test_refresh_if_needed_is_a_no_op_while_valid(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)

        handle = manager.refresh_if_needed(collector)

        assert handle.done()
        assert isinstance(collector.result, Success)
        assert collector.result.value.access_token == "old"
        assert session.requests == []

    def test_refresh_if_needed_refreshes_expired_token(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        clock.advance(3600)
        session.queue(make_response(200, _token_payload("new", "r2")))

        manager.refresh_if_needed(collector)

        assert collector.result.value.access_token == "new"
        assert len(session.requests) == 1

    def test_concurrent_refreshes_share_one_exchange(self, manager, session, secrets, settings_store, clock, caplog):
        caplog.set_level(logging.DEBUG, logger="traktkit")
        _sign_in(secrets, settings_store, clock)
        session.queue(make_response(200, _token_payload("new", "r2")))
        session.hold()
        first, second = Collector(), Collector()

        manager.exchange_refresh_token(first)
        assert session.entered.wait(WAIT)
        manager.exchange_refresh_token(second)
        assert _wait_for_log(caplog, "Joining in-flight Trakt token refresh")
        session.release.set()

        assert first.result.value.access_token == "new"
        assert second.result.value.access_token == "new"
        assert len(session.requests) == 1

    def test_storage_failure_rolls_back(self, session, settings_store, runner, clock, collector):
        secrets = RefusingSecretStore()
        _sign_in(secrets, settings_store, clock)
        original_expiry = settings_store.get_value(ACCESS_TOKEN_EXPIRATION_KEY)
        client = TraktManager(
            session=session,
            secrets=secrets,
            settings_store=settings_store,
            runner=runner,
            clock=clock,
            base_url="https://api.example.test/",
            oauth_base_url="https://trakt.example.test/",
        )
        client.configure(CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)
        session.queue(make_response(200, _token_payload("new", "r2")))

        client.exchange_refresh_token(collector)

        result = collector.result
        assert result.error.kind is ErrorKind.STORAGE
        assert secrets.get_secret(ACCESS_TOKEN_KEY) == b"old"
        assert secrets.get_secret(REFRESH_TOKEN_KEY) == b"r1"
        assert settings_store.get_value(ACCESS_TOKEN_EXPIRATION_KEY) == original_expiry


class TestCredentialState:
    def test_oauth_url(self, manager):
        assert manager.oauth_url == (
            "https://trakt.example.test/oauth/authorize?response_type=code"
            "&client_id=client-123&redirect_uri=urn%3Aietf%3Awg%3Aoauth%3A2.0%3Aoob"
        )

    def test_signed_out_by_default(self, manager):
        assert manager.auth_state() is AuthState.SIGNED_OUT
        assert manager.credential() == Credential()
        assert manager.needs_refresh() is False

    def test_sign_out_clears_everything(self, manager, secrets, settings_store, clock):
        _sign_in(secrets, settings_store, clock)
        assert manager.is_signed_in

        manager.sign_out()

        assert manager.auth_state() is AuthState.SIGNED_OUT
        assert secrets.get_secret(REFRESH_TOKEN_KEY) is None
        assert settings_store.get_value(ACCESS_TOKEN_EXPIRATION_KEY) is None

    def test_token_setters(self, manager, secrets):
        manager.access_token = "set-directly"
        assert secrets.get_secret(ACCESS_TOKEN_KEY) == b"set-directly"

        manager.access_token = None
        assert secrets.get_secret(ACCESS_TOKEN_KEY) is None

    def test_invalid_stored_expiry_is_ignored(self, manager, settings_store):
        settings_store.set_value(ACCESS_TOKEN_EXPIRATION_KEY, "not a date")

        assert manager.expires_at is None


class TestEndpoints:
    def test_get_show(self, manager, session, collector):
        session.queue(make_response(200, {"title": "Breaking Bad", "ids": {"trakt": 1}}))

        manager.get_show("breaking-bad", collector, extended="full")

        assert isinstance(collector.result.value, Show)
        (request,) = session.requests
        assert request.url == "https://api.example.test/shows/breaking-bad"
        assert request.params == {"extended": "full"}
        assert request.headers["trakt-api-key"] == CLIENT_ID
        assert "Authorization" not in request.headers

    def test_trending_shows_drops_bad_entries(self, manager, session, collector):
        payload = [
            {"watchers": 10, "show": {"title": "A", "ids": {"trakt": 1}}},
            {"watchers": 5},
        ]
        session.queue(make_response(200, payload))

        manager.trending_shows(collector, page=2, limit=5)

        shows = collector.result.value
        assert len(shows) == 1
        assert isinstance(shows[0], TrendingShow)
        assert session.requests[0].params == {"page": 2, "limit": 5}

    def test_search_params(self, manager, session, collector):
        session.queue(make_response(200, [{"type": "movie", "score": 26.0, "movie": {"title": "Tron", "ids": {"trakt": 9}}}]))

        manager.search("tron", collector, media_type="movie", year=1982)

        assert collector.result.value[0].movie.title == "Tron"
        assert session.requests[0].params == {"query": "tron", "type": "movie", "year": 1982}

    def test_people(self, manager, session, collector):
        session.queue(make_response(200, {"cast": [{"character": "Flynn", "person": {"name": "Jeff", "ids": {"trakt": 2}}}]}))

        manager.get_movie_people("tron-1982", collector)

        assert len(collector.result.value.cast) == 1
        assert session.requests[0].url == "https://api.example.test/movies/tron-1982/people"

    def test_stats_for_self_are_authorized(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        session.queue(make_response(200, {"movies": {"plays": 1}}))

        manager.get_stats(collector)

        assert collector.result.value == {"movies": {"plays": 1}}
        assert session.requests[0].url == "https://api.example.test/users/me/stats"
        assert session.requests[0].headers["Authorization"] == "Bearer old"

    def test_public_user_lists_are_not_authorized(self, manager, session, collector):
        session.queue(make_response(200, []))

        manager.get_user_lists(collector, username="sean")

        assert collector.result.value == []
        assert "Authorization" not in session.requests[0].headers

    def test_add_to_history_expects_created(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        session.queue(make_response(201, {"added": {"movies": 1}}))

        manager.add_to_history(collector, movies=[{"ids": {"trakt": 9}}])

        assert isinstance(collector.result, Success)
        (request,) = session.requests
        assert request.method == "POST"
        assert request.url == "https://api.example.test/sync/history"
        assert request.json == {"movies": [{"ids": {"trakt": 9}}], "shows": [], "episodes": []}

    def test_add_to_history_reports_unexpected_status(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        session.queue(make_response(200, {"added": {}}))

        manager.add_to_history(collector, movies=[{"ids": {"trakt": 9}}])

        assert collector.result.error.status_code == 200

    def test_expired_token_is_refreshed_before_authorized_call(self, manager, session, secrets, settings_store, clock, collector):
        _sign_in(secrets, settings_store, clock)
        clock.advance(3600)
        session.queue(
            make_response(200, _token_payload("fresh", "r2")),
            make_response(200, {"movies": {}}),
        )

        manager.get_stats(collector)

        assert isinstance(collector.result, Success)
        token_request, stats_request = session.requests
        assert token_request.url == TOKEN_URL
        assert stats_request.headers["Authorization"] == "Bearer fresh"

    def test_trending_movies(self, manager, session, collector):
        payload = [
            {"watchers": 21, "movie": {"title": "Tron", "year": 1982, "ids": {"trakt": 9}}},
            {"watchers": 3, "movie": {"title": "No ids"}},
        ]
        session.queue(make_response(200, payload))

        manager.trending_movies(collector, limit=20)

        movies = collector.result.value
        assert [type(item) for item in movies] == [TrendingMovie]
        assert movies[0].movie.title == "Tron"
        assert session.requests[0].url == "https://api.example.test/movies/trending"
        assert session.requests[0].params == {"page": 1, "limit": 20}

    def test_unknown_endpoint_is_a_configuration_error(self):
        assert settings.get_endpoint("movies", "trending") == "movies/trending"
        with pytest.raises(ConfigError):
            settings.get_endpoint("movies", "nonexistent")
