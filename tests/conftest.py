"""Shared fixtures: in-memory store, fake backend transport, generated photos."""

import json
from io import BytesIO
from typing import Any, Callable, Dict, List

import httpx
import pytest
from PIL import Image

from gent_client.core.backend import BackendClient
from gent_client.core.storage_ops import MemoryStore


def make_photo(width: int = 400, height: int = 600, color=(180, 120, 90)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def json_response(status_code: int, body: Any) -> httpx.Response:
    return httpx.Response(status_code, json=body)


class RecordingHandler:
    """Routes requests by path and remembers every call."""

    def __init__(self, routes: Dict[str, Callable[[httpx.Request], Any]]):
        self.routes = routes
        self.calls: List[httpx.Request] = []

    def paths(self) -> List[str]:
        return [request.url.path for request in self.calls]

    def count(self, path: str) -> int:
        return self.paths().count(path)

    def body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.calls[index].content)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        result = route(request)
        if hasattr(result, "__await__"):
            result = await result
        return result


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def photo():
    return make_photo()


@pytest.fixture
def photo_factory():
    return make_photo


@pytest.fixture
def respond():
    return json_response


@pytest.fixture
def make_backend():
    def _make(routes: Dict[str, Callable[[httpx.Request], Any]], **kwargs):
        handler = RecordingHandler(routes)
        client = BackendClient(
            "http://backend.test", transport=httpx.MockTransport(handler), **kwargs
        )
        return client, handler

    return _make
