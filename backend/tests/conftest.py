"""Shared fixtures: an in-memory key-value store and mock HTTP clients."""

import httpx
import pytest


class FakeStore:
    """Minimal fake of the shared store (the four coroutines the pipeline uses)."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.expire_calls: list[tuple[str, int]] = []

    async def get(self, key: str):
        return self.data.get(key)

    async def setex(self, name: str, time_val: int, value: str):
        self.data[name] = value
        self.ttls[name] = time_val
        return True

    async def incr(self, key: str, amount: int = 1):
        val = int(self.data.get(key, "0")) + amount
        self.data[key] = str(val)
        return val

    async def expire(self, key: str, seconds: int):
        self.expire_calls.append((key, seconds))
        self.ttls[key] = seconds
        return True


class FailingStore:
    """Every operation raises, like a Redis that went away mid-request."""

    async def get(self, key):
        raise ConnectionError("store down")

    async def setex(self, name, time_val, value):
        raise ConnectionError("store down")

    async def incr(self, key, amount=1):
        raise ConnectionError("store down")

    async def expire(self, key, seconds):
        raise ConnectionError("store down")


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by *handler* (sync or async)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def routes(table: dict, default=None):
    """Handler that answers by exact URL, falling back to *default* or a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in table:
            response = table[url]
            return response(request) if callable(response) else response
        if default is not None:
            return default(request)
        return httpx.Response(404, text="not here")

    return handler


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def failing_store():
    return FailingStore()
