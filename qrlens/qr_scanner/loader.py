# qrlens/qr_scanner/loader.py

"""
Page-level image loading with the same taint rules a browser canvas has.

A page may load any image, but it may only *read the pixels* of one that is
same-origin, inline (data:), or served with a CORS grant for the page's
origin when requested in anonymous mode.
"""

from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urlsplit

import httpx

from .. import config
from ..cancel import CancelToken
from ..errors import CrossOriginBlocked, MalformedInput, StrategyFailed
from .qr_utils import raster_from_bytes, raster_from_data_url
from .raster import Raster


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "null"
    default_port = {"http": 80, "https": 443}.get(parts.scheme)
    try:
        port = parts.port
    except ValueError:
        port = None
    host = parts.hostname or ""
    if port and port != default_port:
        return f"{parts.scheme}://{host}:{port}"
    return f"{parts.scheme}://{host}"


class PageImageLoader:
    def __init__(
        self,
        page_url: str,
        client: Optional[httpx.AsyncClient] = None,
        max_bytes: Optional[int] = None,
    ):
        self.page_url = page_url
        self.page_origin = origin_of(page_url)
        self._client = client
        self.max_bytes = max_bytes or config.MAX_IMAGE_BYTES

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=config.FETCH_TIMEOUT, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def load(self, url: str, token: CancelToken, cors_anonymous: bool = False) -> Raster:
        """
        Load `url` and rasterize it.

        Raises CrossOriginBlocked when reading the pixels would taint the
        surface and StrategyFailed when the image does not load.
        """
        if url.startswith("data:"):
            return await token.guard(asyncio.to_thread(raster_from_data_url, url))

        if urlsplit(url).scheme not in ("http", "https"):
            raise StrategyFailed(f"Unsupported image URL scheme: {url[:40]}")

        same_origin = origin_of(url) == self.page_origin
        if not same_origin and not cors_anonymous:
            raise CrossOriginBlocked("Cross-origin image would taint the canvas")

        headers = {}
        if cors_anonymous:
            headers["Origin"] = self.page_origin

        try:
            resp = await token.guard(self._http().get(url, headers=headers))
        except httpx.HTTPError as exc:
            raise StrategyFailed("Failed to load image") from exc

        if resp.status_code >= 400:
            raise StrategyFailed(f"Failed to load image (HTTP {resp.status_code})")

        if not same_origin:
            allowed = resp.headers.get("access-control-allow-origin", "")
            if allowed not in ("*", self.page_origin):
                raise CrossOriginBlocked("Image is not served with a CORS grant for this page")

        if len(resp.content) > self.max_bytes:
            raise StrategyFailed("Image too large")

        mime = resp.headers.get("content-type")
        try:
            return await token.guard(asyncio.to_thread(raster_from_bytes, resp.content, mime))
        except MalformedInput as exc:
            raise StrategyFailed("Failed to load image") from exc
