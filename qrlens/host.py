# qrlens/host.py

"""
Privileged collaborators.

These run outside the page's restrictions: the fetch host may read any
image regardless of CORS, and the capture host can screenshot the visible
viewport. Both answer with a HostResponse instead of raising, mirroring a
message-passing boundary.
"""

from __future__ import annotations

import asyncio
import io
import ipaddress
import json
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

import httpx
from PIL import ImageGrab

from . import config
from .qr_scanner.qr_utils import encode_data_url
from .url_scanner import parse_url

logger = logging.getLogger("qrlens.host")


@dataclass(frozen=True)
class HostResponse:
    success: bool
    data_url: Optional[str] = None
    error: Optional[str] = None
    status: Optional[int] = None

    @classmethod
    def ok(cls, data_url: str) -> "HostResponse":
        return cls(success=True, data_url=data_url)

    @classmethod
    def failed(cls, error: str, status: Optional[int] = None) -> "HostResponse":
        return cls(success=False, error=error, status=status)


# ---------------------------------------------------------
# Internal address guard for server-side fetches
# ---------------------------------------------------------
def _internal_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%")[0])
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


async def resolve_host(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def is_public_host(host: Optional[str]) -> bool:
    """False for loopback, private, link-local and other non-routable targets."""
    if not host:
        return False
    host = host.strip("[]").lower()
    try:
        return not _internal_address(host)
    except ValueError:
        pass
    if host == "localhost" or host.endswith(".localhost"):
        return False
    try:
        addresses = await resolve_host(host)
    except socket.gaierror:
        # unresolvable names fail at fetch time anyway
        return True
    return not any(_internal_address(a) for a in addresses)


async def is_public_url(url: str) -> bool:
    parsed = parse_url(url)
    if parsed is None or parsed.scheme not in ("http", "https"):
        return False
    return await is_public_host(parsed.host)


async def reject_internal_targets(request: httpx.Request) -> None:
    """httpx request hook; runs again for every redirect hop."""
    if not await is_public_host(request.url.host):
        raise httpx.RequestError(f"Refusing to fetch internal address {request.url.host}", request=request)


class FetchHost(Protocol):
    async def fetch_image(self, url: str) -> HostResponse:
        ...


class CaptureHost(Protocol):
    async def capture_visible(self, window_context: Optional[Tuple[int, int, int, int]] = None) -> HostResponse:
        ...


class HttpFetchHost:
    """Fetch an image without credentials or caching and hand it back as a data URL."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=config.FETCH_TIMEOUT,
                follow_redirects=True,
                event_hooks={"request": [reject_internal_targets]},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def fetch_image(self, url: str) -> HostResponse:
        try:
            resp = await self._http().get(url, headers={"Cache-Control": "no-cache"})
        except httpx.HTTPError as exc:
            logger.warning(json.dumps({"event": "proxied_fetch", "url": url[:200], "error": str(exc)}))
            return HostResponse.failed(str(exc) or "Failed")

        if resp.status_code >= 400:
            logger.warning(json.dumps({"event": "proxied_fetch", "url": url[:200], "status": resp.status_code}))
            return HostResponse.failed(f"HTTP {resp.status_code}", status=resp.status_code)

        if len(resp.content) > config.MAX_IMAGE_BYTES:
            return HostResponse.failed("Image too large")

        mime = resp.headers.get("content-type", "application/octet-stream").split(";")[0].strip()
        return HostResponse.ok(encode_data_url(resp.content, mime))


class ScreenCaptureHost:
    """Screenshot of the visible screen (or a window box on it) as a PNG data URL."""

    async def capture_visible(self, window_context: Optional[Tuple[int, int, int, int]] = None) -> HostResponse:
        bbox = None
        if window_context is not None:
            x, y, w, h = window_context
            bbox = (x, y, x + w, y + h)
        try:
            shot = await asyncio.to_thread(ImageGrab.grab, bbox)
        except OSError as exc:
            logger.warning(json.dumps({"event": "capture", "error": str(exc)}))
            return HostResponse.failed(str(exc) or "Failed to capture")

        buf = io.BytesIO()
        shot.save(buf, format="PNG")
        return HostResponse.ok(encode_data_url(buf.getvalue(), "image/png"))
