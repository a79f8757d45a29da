from __future__ import annotations

import base64
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable
from urllib.parse import urlparse

import requests

from clinic import config

logger = logging.getLogger("clinic.images")

DEFAULT_CONTENT_TYPE = "image/jpeg"
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp")
CHUNK_SIZE = 8192


def encode_data_uri(content: bytes, content_type: str | None) -> str:
    payload = base64.b64encode(content).decode("ascii")
    return f"data:{content_type or DEFAULT_CONTENT_TYPE};base64,{payload}"


def fetch_image_as_base64(url: str, timeout: float | None = None) -> str | None:
    """
    Download an image and return it as a data URI ("data:image/png;base64,...").

    `timeout` bounds the whole download, body included. Any failure (network,
    deadline, non-2xx) yields None: the attachment is simply unavailable for
    the caller.
    """
    limit = timeout if timeout is not None else config.image_fetch_timeout()
    deadline = time.monotonic() + limit
    try:
        with requests.get(url, stream=True, timeout=limit) as r:
            r.raise_for_status()
            chunks = []
            for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    logger.warning("Image download from %s exceeded %ss", url, limit)
                    return None
                chunks.append(chunk)
            content_type = r.headers.get("Content-Type")
    except requests.RequestException as e:
        logger.warning("Failed to fetch image from %s: %s", url, e)
        return None

    return encode_data_uri(b"".join(chunks), content_type)


def fetch_many_as_base64(urls: Iterable[str], max_workers: int | None = None) -> list[str | None]:
    """Fetch all at once; result i belongs to urls[i]."""
    urls = list(urls)
    if not urls:
        return []
    workers = max_workers or config.image_fetch_workers() or len(urls)
    with ThreadPoolExecutor(max_workers=min(workers, len(urls))) as pool:
        return list(pool.map(fetch_image_as_base64, urls))


def is_valid_image_url(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)
