import base64
import threading
import time

import pytest
import requests

from clinic import image_utils
from clinic.image_utils import (
    encode_data_uri,
    fetch_image_as_base64,
    fetch_many_as_base64,
    is_valid_image_url,
)


class FakeResponse:
    def __init__(self, content=b"", content_type=None, status=200, chunk_delay=0.0):
        self.content = content
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.status_code = status
        self.chunk_delay = chunk_delay

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        # one byte per chunk, like a server trickling the body
        for i in range(len(self.content)):
            time.sleep(self.chunk_delay)
            yield self.content[i : i + 1]


@pytest.mark.parametrize(
    "url",
    [
        "https://cdn.example.com/a.png",
        "http://cdn.example.com/path/to/IMG.JPG",
        "https://cdn.example.com/diagram.webp?size=large",
    ],
)
def test_valid_image_urls(url):
    assert is_valid_image_url(url)


@pytest.mark.parametrize(
    "value",
    [None, "", "not a url", "/local/a.png", "https://cdn.example.com/doc.pdf", "https://cdn.example.com/", 42],
)
def test_invalid_image_urls(value):
    assert not is_valid_image_url(value)


def test_fetch_encodes_bytes_with_content_type(monkeypatch):
    seen = {}

    def fake_get(url, timeout, stream=False):
        seen["timeout"] = timeout
        seen["stream"] = stream
        return FakeResponse(b"\x89PNG-bytes", "image/png")

    monkeypatch.setattr(image_utils.requests, "get", fake_get)

    uri = fetch_image_as_base64("https://cdn.example.com/a.png")
    assert uri.startswith("data:image/png;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]) == b"\x89PNG-bytes"
    assert seen["timeout"] == 10.0
    assert seen["stream"] is True


def test_fetch_defaults_to_jpeg(monkeypatch):
    monkeypatch.setattr(image_utils.requests, "get", lambda url, timeout, stream=False: FakeResponse(b"x"))
    assert fetch_image_as_base64("https://cdn.example.com/a.jpg") == encode_data_uri(b"x", "image/jpeg")


def test_fetch_timeout_yields_none(monkeypatch):
    def fake_get(url, timeout, stream=False):
        raise requests.Timeout("too slow")

    monkeypatch.setattr(image_utils.requests, "get", fake_get)
    assert fetch_image_as_base64("https://cdn.example.com/a.png") is None


def test_fetch_http_error_yields_none(monkeypatch):
    monkeypatch.setattr(image_utils.requests, "get", lambda url, timeout, stream=False: FakeResponse(status=404))
    assert fetch_image_as_base64("https://cdn.example.com/missing.png") is None


def test_fetch_many_keeps_input_order(monkeypatch):
    delays = {"a": 0.05, "b": 0.0, "c": 0.02}

    def fake_get(url, timeout, stream=False):
        name = url.rsplit("/", 1)[1].split(".")[0]
        time.sleep(delays[name])
        if name == "b":
            raise requests.ConnectionError("down")
        return FakeResponse(name.encode(), "image/png")

    monkeypatch.setattr(image_utils.requests, "get", fake_get)

    urls = [f"https://cdn.example.com/{n}.png" for n in ("a", "b", "c")]
    results = fetch_many_as_base64(urls, max_workers=3)

    assert results == [encode_data_uri(b"a", "image/png"), None, encode_data_uri(b"c", "image/png")]


def test_fetch_many_empty():
    assert fetch_many_as_base64([]) == []


def test_slow_body_is_cut_at_the_deadline(monkeypatch):
    monkeypatch.setattr(
        image_utils.requests,
        "get",
        lambda url, timeout, stream=False: FakeResponse(b"xxxxxx", "image/png", chunk_delay=0.2),
    )

    started = time.monotonic()
    result = fetch_image_as_base64("https://cdn.example.com/slow.png", timeout=0.5)
    elapsed = time.monotonic() - started

    assert result is None
    assert elapsed < 1.0


def test_fetch_many_starts_every_fetch_at_once(monkeypatch):
    urls = [f"https://cdn.example.com/{i}.png" for i in range(16)]
    barrier = threading.Barrier(len(urls), timeout=2)

    def fake_get(url, timeout, stream=False):
        # every worker must be waiting here together, else the barrier breaks
        barrier.wait()
        return FakeResponse(b"ok", "image/png")

    monkeypatch.setattr(image_utils.requests, "get", fake_get)
    monkeypatch.delenv("IMAGE_FETCH_WORKERS", raising=False)

    results = fetch_many_as_base64(urls)
    assert results == [encode_data_uri(b"ok", "image/png")] * len(urls)
