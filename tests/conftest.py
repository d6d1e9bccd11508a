"""
Shared test fixtures: a scripted stand-in for requests.Session, an
in-memory credential slot and a ready-wired workspace.
"""
import json
import sys
from pathlib import Path

import pytest
import requests

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api_client import ApiClient, ServiceConfig
from session_manager import Credential, CredentialStore, SessionManager
from stock_model import Board, Cut, Problem
from workspace import Workspace

BASE_URL = "http://backend.test"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        return json.loads(self.text)


class MemoryCredentialStore(CredentialStore):
    """Credential slot held in memory; counts writes."""

    def __init__(self):
        super().__init__("memory")
        self._credential = None
        self.writes = 0

    def load(self):
        return self._credential

    def save(self, credential):
        self._credential = credential
        self.writes += 1

    def clear(self):
        self._credential = None


class FakeHttp:
    """Replays queued responses per (method, path) and records every call.

    A queued value may be a FakeResponse, a callable taking the recorded call
    and returning one, or an exception instance to raise.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, response):
        self.routes.setdefault((method, path), []).append(response)
        return self

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        path = url[len(BASE_URL):] if url.startswith(BASE_URL) else url
        call = {
            "method": method, "path": path, "headers": headers or {},
            "timeout": timeout, "params": params, "json": json,
        }
        self.calls.append(call)
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {path}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(call)
        return response

    def calls_to(self, method, path):
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def config(tmp_path):
    return ServiceConfig(
        base_url=BASE_URL,
        optimize_timeout_seconds=45.0,
        request_timeout_seconds=5.0,
        credentials_path=str(tmp_path / "credentials.json"),
    )


@pytest.fixture
def api(config, http):
    return ApiClient(config, http=http)


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def opened_urls():
    return []


@pytest.fixture
def session_manager(api, store, opened_urls):
    return SessionManager(api, store, open_url=opened_urls.append)


@pytest.fixture
def credential():
    return Credential(access_token="tok-123", refresh_token="ref-456")


@pytest.fixture
def logged_in(http, store, session_manager, credential):
    """A session manager already authenticated as user u1."""
    store.save(credential)
    http.add("GET", "/auth/whoami", FakeResponse(200, {"id": "u1", "name": "Ada"}))
    session_manager.restore()
    assert session_manager.is_authenticated
    return session_manager


@pytest.fixture
def workspace(config, http, store, opened_urls):
    return Workspace.create(config, http=http, store=store, open_url=opened_urls.append)


@pytest.fixture
def sample_problem():
    """The starter problem: three 24" cuts from a 96" board."""
    return Problem(
        cuts=[Cut(width=2, height=4, length=24, quantity=3)],
        boards=[Board(width=2, height=4, length=96, price=8)],
    )


@pytest.fixture
def sample_solution_payload():
    return {
        "board_plan": {"0": 1},
        "cut_plan": {"0": [[24, 24, 24]]},
        "waste_summary": {"0": 24},
        "total_cost": 8,
    }


@pytest.fixture
def connection_refused():
    return requests.ConnectionError(
        "HTTPConnectionPool(host='backend.test', port=80): Max retries exceeded "
        "(Caused by NewConnectionError: [Errno 111] Connection refused)"
    )
