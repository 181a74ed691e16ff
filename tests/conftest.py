import json

import httpx
import pytest
from fastapi.testclient import TestClient

from iptvlinks.config import Settings, StreamConfig
from iptvlinks.main import create_app
from iptvlinks.storage import FileLinkStore

SAMPLE_LINKS = [
    {
        "id": 1,
        "name": "News One",
        "original": "cdn.example.com/live/news1/index.m3u8",
        "converted": "/stream/news/1",
        "category": "news",
        "createdAt": "2024-01-01T00:00:00Z",
    },
    {
        "id": 42,
        "name": "Sports HD",
        "original": "http://sports.example.com/hd.ts",
        "converted": "/stream/sports/42",
        "category": "Sports",
        "createdAt": "2024-01-02T00:00:00Z",
    },
    {
        "id": 1,
        "name": "Sports One",
        "original": "https://sports.example.com/one.m3u8",
        "converted": "/stream/sports/1",
        "category": "sports",
        "createdAt": "2024-01-03T00:00:00Z",
    },
]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def data_file(tmp_path):
    path = tmp_path / "links.json"
    path.write_text(json.dumps({"links": SAMPLE_LINKS, "categories": ["news", "sports"]}))
    return path


@pytest.fixture
def store(data_file):
    return FileLinkStore(data_file)


class Upstream:
    """Routes for httpx.MockTransport, keyed by URL; records every request seen."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, status=200, content=b"", headers=None):
        self.routes[url] = (status, content, headers or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url not in self.routes:
            return httpx.Response(404, content=b"no such upstream")
        status, content, headers = self.routes[url]
        return httpx.Response(status, content=content, headers=headers)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def make_client(store, upstream):
    def _make(**stream_overrides):
        settings = Settings(stream=StreamConfig(**stream_overrides))
        app = create_app(settings, store=store)
        app.state.http_client = upstream.client()
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
