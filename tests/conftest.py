"""Pytest configuration and fixtures."""

import json
from typing import Any, List, Optional

import pytest

from image_updater import log


class FakeResponse:
    """The parts of aiohttp's ClientResponse the clients touch."""

    def __init__(self, status: int = 200, payload: Any = None):
        self.status = status
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        if isinstance(self.payload, str):
            return json.loads(self.payload)
        return self.payload

    async def text(self):
        if self.payload is None:
            return ""
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload)


class FakeSession:
    """
    Replays queued responses and records every request.

    Queue either FakeResponse objects or exceptions to raise.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[dict] = []

    def _next(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def request(self, method, url, **kwargs):
        return self._next(method, url, **kwargs)


def tags_page(names, next_url=None):
    return FakeResponse(200, {"results": [{"name": n} for n in names], "next": next_url})


@pytest.fixture(autouse=True)
def debug_output():
    """Run every test with full output so log calls are exercised."""
    log.configure("DEBUG")
    yield
    log.configure("INFO")
