"""Shared fixtures: a throwaway SQLite database and fake HTTP/model clients."""

import os
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database as db


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the database module at a fresh SQLite file."""
    monkeypatch.setattr(db, "USE_POSTGRES", False)
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "waymark-test.db"))
    db.init_db()
    return db


@pytest.fixture
def user_id(temp_db):
    return temp_db.create_user("alice", "alice@example.com", "correct-horse")


class FakeResponse:
    """Enough of requests.Response for the API clients."""

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or ("" if payload is None else str(payload))

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Records calls and answers from a queue of FakeResponses (or exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append(SimpleNamespace(method=method, url=url, **kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)


class FakeMessages:
    def __init__(self, owner):
        self.owner = owner

    def create(self, **kwargs):
        self.owner.calls.append(kwargs)
        if isinstance(self.owner.result, Exception):
            raise self.owner.result
        return self.owner.result


class FakeAnthropic:
    """Stands in for anthropic.Anthropic; returns one canned response."""

    def __init__(self, result=None):
        self.result = result
        self.calls = []
        self.messages = FakeMessages(self)


def tool_response(name, arguments):
    """A model response holding a single tool_use block."""
    return SimpleNamespace(content=[
        SimpleNamespace(type="tool_use", name=name, input=arguments),
    ])


def text_response(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


class FakeClock:
    """Settable stand-in for time.time / time.monotonic."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now
