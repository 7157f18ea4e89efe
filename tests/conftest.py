"""Shared fixtures: a scripted transport, in-memory stores and a fake clock."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from traktkit.backend.common.tasks import TaskRunner
from traktkit.backend.information_handlers.trakt_manager import TraktManager
from traktkit.backend.persistence.secrets import MemorySecretStore
from traktkit.backend.persistence.sqlite import MemorySettingsStore

CLIENT_ID = "client-123"
CLIENT_SECRET = "secret-456"  # pragma: allowlist secret
REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
WAIT = 5.0


def make_response(status=200, payload=None, *, body=None, headers=None):
    response = requests.Response()
    response.status_code = status
    if body is None and payload is not None:
        body = json.dumps(payload).encode("utf-8")
    response._content = body if body is not None else b""
    response.headers = CaseInsensitiveDict(headers or {})
    return response


class FakeSession:
    """Stands in for HttpSession; replays queued responses or exceptions."""

    def __init__(self):
        self.requests = []
        self.responses = []
        self.entered = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self._lock = threading.Lock()

    def queue(self, *items):
        self.responses.extend(items)

    def hold(self):
        self.release.clear()

    def perform(self, request):
        with self._lock:
            self.requests.append(request)
            if not self.responses:
                raise AssertionError(f"unexpected request {request.method} {request.url}")
            item = self.responses.pop(0)
        self.entered.set()
        self.release.wait(WAIT)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self):
        pass


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class Collector:
    """Completion that records every result it receives."""

    def __init__(self):
        self.results = []
        self.called = threading.Event()

    def __call__(self, result):
        self.results.append(result)
        self.called.set()

    @property
    def result(self):
        assert self.called.wait(WAIT), "completion was never invoked"
        assert len(self.results) == 1
        return self.results[0]


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def secrets():
    return MemorySecretStore()


@pytest.fixture
def settings_store():
    return MemorySettingsStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runner():
    task_runner = TaskRunner(max_workers=4, context="test")
    yield task_runner
    task_runner.close(wait=True)


@pytest.fixture
def manager(session, secrets, settings_store, runner, clock):
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
    return client


@pytest.fixture
def collector():
    return Collector()
