# qrlens/qr_scanner/strategies.py

"""
Acquisition strategies and the ordered chain that runs them.

The chain for a selected element / file / clipboard item is a plain tuple
of strategy objects (ELEMENT_STRATEGIES). ImageAcquirer walks it in order,
one strategy at a time, and stops at the first raster. Full-page capture
is a separate entry point and never part of that chain.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit

from .. import config
from ..cancel import CancelToken
from ..errors import AcquisitionExhausted, MalformedInput, StrategyFailed, TransportFailure
from ..host import CaptureHost, FetchHost
from .loader import PageImageLoader
from .qr_utils import raster_from_data_url, rasterize_svg
from .raster import Raster
from .sources import ImageSource

logger = logging.getLogger("qrlens.acquire")


class StrategyKind(str, Enum):
    DIRECT = "direct"
    NESTED_SEARCH = "nested-search"
    CROSS_ORIGIN = "cross-origin"
    VECTOR_SERIALIZE = "vector-serialize"
    PROXIED_FETCH = "proxied-fetch"
    FULL_PAGE_CAPTURE = "full-page-capture"


@dataclass(frozen=True)
class AcquisitionAttempt:
    strategy_kind: StrategyKind
    raster: Optional[Raster] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.raster is not None


@dataclass
class Acquisition:
    raster: Raster
    attempts: List[AcquisitionAttempt] = field(default_factory=list)


@dataclass
class AcquisitionContext:
    base_url: str
    loader: PageImageLoader
    fetch_host: FetchHost
    token: CancelToken
    svg_default_size: int = 200

    def absolute(self, url: str) -> str:
        return urljoin(self.base_url, url) if self.base_url else url


class AcquisitionStrategy:
    kind: StrategyKind

    def applies_to(self, source: ImageSource) -> bool:
        return True

    async def acquire(self, source: ImageSource, ctx: AcquisitionContext) -> Raster:
        raise NotImplementedError


class DirectRead(AcquisitionStrategy):
    """Read a pixel surface in place, no network involved."""

    kind = StrategyKind.DIRECT

    def applies_to(self, source):
        return source.has_pixel_surface()

    async def acquire(self, source, ctx):
        ctx.token.raise_if_cancelled()
        return source.read_pixels()


class UnauthenticatedLoad(AcquisitionStrategy):
    """Load the element's own, background or nested image without credentials."""

    kind = StrategyKind.NESTED_SEARCH
    cors_anonymous = False

    def applies_to(self, source):
        return source.resolve_image_url() is not None

    async def acquire(self, source, ctx):
        url = ctx.absolute(source.resolve_image_url())
        return await ctx.loader.load(url, ctx.token, cors_anonymous=self.cors_anonymous)


class AnonymousCorsLoad(UnauthenticatedLoad):
    """Same resource, requested in CORS-anonymous mode."""

    kind = StrategyKind.CROSS_ORIGIN
    cors_anonymous = True

    def applies_to(self, source):
        url = source.resolve_image_url()
        return url is not None and not url.startswith("data:")


class VectorSerialize(AcquisitionStrategy):
    """Serialize inline SVG to a standalone image and rasterize that."""

    kind = StrategyKind.VECTOR_SERIALIZE

    def applies_to(self, source):
        return source.serialize_markup() is not None

    async def acquire(self, source, ctx):
        markup = source.serialize_markup().encode("utf-8")
        try:
            return await ctx.token.guard(asyncio.to_thread(rasterize_svg, markup, ctx.svg_default_size))
        except MalformedInput as exc:
            raise StrategyFailed("Cannot access SVG") from exc


class ProxiedFetch(AcquisitionStrategy):
    """Ask the privileged host to fetch the image, then rasterize locally."""

    kind = StrategyKind.PROXIED_FETCH

    def applies_to(self, source):
        url = source.resolve_image_url()
        return url is not None and not url.startswith("data:")

    async def acquire(self, source, ctx):
        url = ctx.absolute(source.resolve_image_url())
        if urlsplit(url).scheme not in ("http", "https"):
            raise StrategyFailed("Only http(s) images can be fetched by the host")
        result = await ctx.token.guard(ctx.fetch_host.fetch_image(url))
        if not result.success or not result.data_url:
            raise TransportFailure(result.error or "Failed", status=result.status)
        try:
            return await ctx.token.guard(asyncio.to_thread(raster_from_data_url, result.data_url))
        except MalformedInput as exc:
            raise StrategyFailed("Fetched resource is not an image") from exc


ELEMENT_STRATEGIES: Tuple[AcquisitionStrategy, ...] = (
    DirectRead(),
    UnauthenticatedLoad(),
    AnonymousCorsLoad(),
    VectorSerialize(),
    ProxiedFetch(),
)


class ImageAcquirer:
    def __init__(
        self,
        loader: PageImageLoader,
        fetch_host: FetchHost,
        capture_host: CaptureHost,
        strategies: Sequence[AcquisitionStrategy] = ELEMENT_STRATEGIES,
        svg_default_size: Optional[int] = None,
    ):
        self.loader = loader
        self.fetch_host = fetch_host
        self.capture_host = capture_host
        self.strategies = tuple(strategies)
        self.svg_default_size = svg_default_size or config.SVG_DEFAULT_SIZE

    def _log(self, source: str, attempt: AcquisitionAttempt) -> None:
        logger.info(
            json.dumps(
                {
                    "event": "acquisition_attempt",
                    "source": source,
                    "strategy": attempt.strategy_kind.value,
                    "success": attempt.succeeded,
                    "reason": attempt.reason,
                }
            )
        )

    async def acquire(self, source: ImageSource, token: CancelToken) -> Acquisition:
        """
        Run the element chain against `source`.

        Strategies execute strictly one after another; the first raster
        wins. Raises AcquisitionExhausted when nothing applicable works and
        MalformedInput when a file/clipboard source is not image data.
        """
        source.validate()
        ctx = AcquisitionContext(
            base_url=self.loader.page_url,
            loader=self.loader,
            fetch_host=self.fetch_host,
            token=token,
            svg_default_size=self.svg_default_size,
        )

        attempts: List[AcquisitionAttempt] = []
        for strategy in self.strategies:
            if not strategy.applies_to(source):
                continue
            token.raise_if_cancelled()
            try:
                raster = await strategy.acquire(source, ctx)
            except (StrategyFailed, TransportFailure) as exc:
                attempt = AcquisitionAttempt(strategy.kind, reason=str(exc))
                attempts.append(attempt)
                self._log(source.describe(), attempt)
                continue

            attempt = AcquisitionAttempt(strategy.kind, raster=raster)
            attempts.append(attempt)
            self._log(source.describe(), attempt)
            return Acquisition(raster=raster, attempts=attempts)

        raise AcquisitionExhausted(attempts=attempts)

    async def capture_page(
        self,
        token: CancelToken,
        window_context: Optional[Tuple[int, int, int, int]] = None,
    ) -> Acquisition:
        """Screenshot the visible viewport through the privileged host."""
        result = await token.guard(self.capture_host.capture_visible(window_context))
        if not result.success or not result.data_url:
            self._log("viewport", AcquisitionAttempt(StrategyKind.FULL_PAGE_CAPTURE, reason=result.error))
            raise TransportFailure(result.error or "Failed to capture", status=result.status)

        raster = await token.guard(asyncio.to_thread(raster_from_data_url, result.data_url))
        attempt = AcquisitionAttempt(StrategyKind.FULL_PAGE_CAPTURE, raster=raster)
        self._log("viewport", attempt)
        return Acquisition(raster=raster, attempts=[attempt])
