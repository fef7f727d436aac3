import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from medialog_backfill.models import SiteContext


class FakeResponse:
    """Just enough of requests.Response for the code under test."""

    def __init__(self, status_code: int = 200, json_data: Any = None, text: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """Routes every request through ``handler(method, url, kwargs)`` and records it."""

    def __init__(self, handler: Callable[[str, str, Dict[str, Any]], FakeResponse]):
        self.handler = handler
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def _request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)


@pytest.fixture
def site():
    return SiteContext(org="acme", repo="site", ref="main")


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def queued_session():
    """Build a session answering requests from a fixed list, in order."""

    def factory(*responses):
        pending = list(responses)

        def handler(method, url, kwargs):
            item = pending.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        return FakeSession(handler)

    return factory


@pytest.fixture
def routed_session():
    """Build a session from a handler function."""
    return FakeSession


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping."""
    import time

    recorded: List[float] = []
    monkeypatch.setattr(time, "sleep", recorded.append)
    return recorded
