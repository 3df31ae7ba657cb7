"""Shared fakes for download engine tests."""

import io
import json
import tarfile
import threading
import zipfile

import pytest

from pluginsync.download.errors import TransportError
from pluginsync.download.rate_limiter import RateLimiter
from pluginsync.download.transport import HttpResponse
from pluginsync.registry.openvsx import RegistryExtension


class FakeClock:
    """Manual clock; sleeping advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport:
    """Serves canned responses per URL and records every request.

    Each URL maps to a list of responses consumed in order; the last one
    repeats. An exception instance in the list is raised instead.
    """

    def __init__(self, routes=None) -> None:
        self.routes = {url: list(resp) for url, resp in (routes or {}).items()}
        self.requests = []
        self._lock = threading.Lock()

    def add(self, url, *responses) -> None:
        self.routes[url] = list(responses)

    def get(self, url):
        with self._lock:
            self.requests.append(url)
            queue = self.routes.get(url)
            if not queue:
                return HttpResponse(404, b"", "Not Found")
            response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, url) -> int:
        return self.requests.count(url)


class FakeRegistry:
    """Registry client returning preconfigured extensions."""

    def __init__(self, extensions=None) -> None:
        self.extensions = dict(extensions or {})
        self.calls = []
        self._lock = threading.Lock()

    def publish(self, extension_id, download_url, version="1.0.0") -> None:
        self.extensions[extension_id] = RegistryExtension(
            extension_id=extension_id, version=version, download_url=download_url
        )

    def resolve_extension(self, extension_id, target_platform, api_version, version=None):
        with self._lock:
            self.calls.append((extension_id, target_platform, api_version, version))
        result = self.extensions.get(extension_id)
        if isinstance(result, Exception):
            raise result
        return result


def build_vsix(manifest: dict, extra_files=None) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("extension/package.json", json.dumps(manifest))
        for name, content in (extra_files or {}).items():
            zf.writestr(name, content)
    return buf.getvalue()


def build_tarball(files: dict) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def ok(body: bytes) -> HttpResponse:
    return HttpResponse(200, body, "OK")


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def unlimited():
    """Rate limiter that never blocks in tests with a handful of requests."""
    return RateLimiter(10_000)


@pytest.fixture
def transport_error():
    def _make(message="connection reset"):
        return TransportError(message)

    return _make


@pytest.fixture
def make_vsix():
    return build_vsix


@pytest.fixture
def make_tarball():
    return build_tarball


@pytest.fixture
def ok_response():
    return ok
