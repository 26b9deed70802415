from __future__ import annotations

import queue
import struct
import zlib
from concurrent.futures import Executor, Future
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional

import pytest
from PIL import Image

from mapterm.ingest.wms_client import FetchPipeline, WMSClient
from mapterm.render.protocols import Capabilities, ProtocolAdapter


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"",
                 json_data: Any = None):
        self.status_code = status_code
        self.content = content
        self._json = json_data

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json


class FakeSession:
    """Records GET calls; answers through *handler(url, params)*."""

    def __init__(self, handler: Optional[Callable[[str, Dict[str, str]], FakeResponse]] = None):
        self.handler = handler or (lambda url, params: FakeResponse(200, b""))
        self.calls: List[Dict[str, Any]] = []
        self.auth = None

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}),
                           "headers": headers, "timeout": timeout})
        return self.handler(url, params or {})


class ImmediateExecutor(Executor):
    """Runs submitted work inline so events are queued before submit returns."""

    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # pragma: no cover
            future.set_exception(exc)
        return future


def make_png(width: int = 64, height: int = 48, color=(0, 128, 0, 255), fmt: str = "PNG") -> bytes:
    img = Image.new("RGBA", (width, height), color)
    if fmt == "JPEG":
        img = img.convert("RGB")
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def oversized_png(width: int = 20000, height: int = 20000) -> bytes:
    """A PNG whose header claims a huge canvas but carries no pixels."""
    def chunk(kind: bytes, body: bytes) -> bytes:
        return (struct.pack(">I", len(body)) + kind + body
                + struct.pack(">I", zlib.crc32(kind + body) & 0xFFFFFFFF))

    header = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    return (b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header)
            + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b""))


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def events() -> "queue.Queue[Any]":
    return queue.Queue()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def pipeline(session, events) -> FetchPipeline:
    client = WMSClient("http://maps.example/geoserver", session, timeout=5)
    return FetchPipeline(client, events, executor=ImmediateExecutor())


@pytest.fixture
def ascii_adapter() -> ProtocolAdapter:
    return ProtocolAdapter(Capabilities())


def drain(events: "queue.Queue[Any]") -> list:
    out = []
    while not events.empty():
        out.append(events.get_nowait())
    return out
