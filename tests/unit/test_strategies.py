"""Unit tests for the acquisition chain (qrlens/qr_scanner/strategies.py) and
the page image loader's taint rules (qrlens/qr_scanner/loader.py)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
import pytest

from qrlens.cancel import CancelToken
from qrlens.errors import (
    AcquisitionExhausted,
    CrossOriginBlocked,
    MalformedInput,
    ScanCancelled,
    StrategyFailed,
    TransportFailure,
)
from qrlens.host import HostResponse
from qrlens.qr_scanner.loader import PageImageLoader, origin_of
from qrlens.qr_scanner.sources import (
    ClipboardItem,
    FileSource,
    GenericContainer,
    PixelSurface,
    RasterImage,
    VectorGraphic,
    css_background_url,
)
from qrlens.qr_scanner.qr_utils import encode_data_url
from qrlens.qr_scanner.strategies import ImageAcquirer, StrategyKind
from tests.fakes import (
    FakeCaptureHost,
    FakeFetchHost,
    HungFetchHost,
    RecordingTransport,
    png_bytes,
    png_data_url,
    solid_raster,
)

PAGE_URL = "https://shop.example.com/checkout"
CDN_IMAGE = "https://cdn.example.net/qr.png"
SVG = b'<svg xmlns="http://www.w3.org/2000/svg" width="40" height="30"/>'


@dataclass(eq=False)
class StubbornElement(PixelSurface):
    """A tainted surface that also exposes a cross-origin URL and broken markup."""

    url: str = CDN_IMAGE
    markup: str = "<svg"

    def resolve_image_url(self):
        return self.url

    def serialize_markup(self):
        return self.markup


@pytest.fixture
def svg_renderer(monkeypatch: pytest.MonkeyPatch):
    """Stand-in SVG renderer so the routing is tested without libcairo."""
    rendered = []

    def render(markup, default_size=200):
        rendered.append(markup)
        return solid_raster(40, 30)

    monkeypatch.setattr("qrlens.qr_scanner.qr_utils.rasterize_svg", render)
    return rendered


def make_acquirer(transport=None, fetch_host=None, capture_host=None, page_url=PAGE_URL):
    transport = transport or RecordingTransport()
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return ImageAcquirer(
        loader=PageImageLoader(page_url, client=client),
        fetch_host=fetch_host or FakeFetchHost(),
        capture_host=capture_host or FakeCaptureHost(),
    )


def kinds(acquisition_or_exc):
    return [a.strategy_kind for a in acquisition_or_exc.attempts]


@pytest.mark.asyncio
class TestElementChain:
    async def test_pixel_surface_is_read_in_place(self) -> None:
        transport = RecordingTransport()
        surface = PixelSurface("canvas", raster=solid_raster(3, 3))
        result = await make_acquirer(transport).acquire(surface, CancelToken())
        assert result.raster is surface.raster
        assert kinds(result) == [StrategyKind.DIRECT]
        assert transport.requests == []

    async def test_same_origin_image_loads_without_cors(self) -> None:
        transport = RecordingTransport()
        img = RasterImage("img", src="https://shop.example.com/static/qr.png")
        result = await make_acquirer(transport).acquire(img, CancelToken())
        assert kinds(result) == [StrategyKind.NESTED_SEARCH]
        assert "origin" not in transport.requests[0].headers

    async def test_relative_src_resolves_against_page(self) -> None:
        transport = RecordingTransport()
        img = RasterImage("img", src="/static/qr.png")
        await make_acquirer(transport).acquire(img, CancelToken())
        assert str(transport.requests[0].url) == "https://shop.example.com/static/qr.png"

    async def test_cross_origin_falls_through_to_anonymous_cors(self) -> None:
        transport = RecordingTransport(allow_origin="*")
        img = RasterImage("img", src=CDN_IMAGE)
        result = await make_acquirer(transport).acquire(img, CancelToken())
        assert kinds(result) == [StrategyKind.NESTED_SEARCH, StrategyKind.CROSS_ORIGIN]
        assert not result.attempts[0].succeeded
        assert result.attempts[1].succeeded
        # the plain load is refused before any request goes out
        assert len(transport.requests) == 1
        assert transport.requests[0].headers["origin"] == "https://shop.example.com"

    async def test_proxied_fetch_after_four_failures_without_capture(self) -> None:
        fetch_host = FakeFetchHost(HostResponse.ok(png_data_url(6, 6)))
        capture_host = FakeCaptureHost()
        acquirer = make_acquirer(RecordingTransport(), fetch_host, capture_host)

        result = await acquirer.acquire(StubbornElement("el", tainted=True), CancelToken())

        assert kinds(result) == [
            StrategyKind.DIRECT,
            StrategyKind.NESTED_SEARCH,
            StrategyKind.CROSS_ORIGIN,
            StrategyKind.VECTOR_SERIALIZE,
            StrategyKind.PROXIED_FETCH,
        ]
        assert [a.succeeded for a in result.attempts] == [False, False, False, False, True]
        assert (result.raster.width, result.raster.height) == (6, 6)
        assert fetch_host.urls == [CDN_IMAGE]
        assert capture_host.calls == 0

    async def test_exhaustion_reports_one_aggregate_reason(self) -> None:
        fetch_host = FakeFetchHost(HostResponse.failed("HTTP 403", status=403))
        acquirer = make_acquirer(RecordingTransport(), fetch_host)
        with pytest.raises(AcquisitionExhausted) as excinfo:
            await acquirer.acquire(RasterImage("img", src=CDN_IMAGE), CancelToken())
        assert excinfo.value.reason == 'Cannot load image. Try "Scan Visible Page" or upload instead.'
        assert kinds(excinfo.value) == [
            StrategyKind.NESTED_SEARCH,
            StrategyKind.CROSS_ORIGIN,
            StrategyKind.PROXIED_FETCH,
        ]
        assert excinfo.value.attempts[-1].reason == "HTTP 403"

    async def test_element_with_nothing_to_load_is_exhausted(self) -> None:
        with pytest.raises(AcquisitionExhausted) as excinfo:
            await make_acquirer().acquire(GenericContainer("div"), CancelToken())
        assert excinfo.value.attempts == ()

    async def test_container_uses_background_image(self) -> None:
        transport = RecordingTransport()
        div = GenericContainer("div", background_image='url("/bg/qr.png")')
        await make_acquirer(transport).acquire(div, CancelToken())
        assert str(transport.requests[0].url) == "https://shop.example.com/bg/qr.png"

    async def test_container_uses_nested_image(self) -> None:
        transport = RecordingTransport()
        div = GenericContainer("div", children=[RasterImage("inner", data_src="/lazy/qr.png")])
        await make_acquirer(transport).acquire(div, CancelToken())
        assert str(transport.requests[0].url) == "https://shop.example.com/lazy/qr.png"

    async def test_broken_svg_is_not_fatal(self) -> None:
        with pytest.raises(AcquisitionExhausted) as excinfo:
            await make_acquirer().acquire(VectorGraphic("svg", markup="<svg"), CancelToken())
        assert kinds(excinfo.value) == [StrategyKind.VECTOR_SERIALIZE]
        assert excinfo.value.attempts[0].reason == "Cannot access SVG"

    async def test_cancel_abandons_a_hung_fetch(self) -> None:
        fetch_host = HungFetchHost()
        token = CancelToken()
        acquirer = make_acquirer(RecordingTransport(), fetch_host)
        task = asyncio.create_task(acquirer.acquire(RasterImage("img", src=CDN_IMAGE), token))
        await fetch_host.started.wait()

        token.cancel()

        with pytest.raises(ScanCancelled):
            await asyncio.wait_for(task, 1.0)
        await asyncio.wait_for(fetch_host.abandoned.wait(), 1.0)

    async def test_cancelled_token_stops_the_chain(self) -> None:
        token = CancelToken()
        token.cancel()
        with pytest.raises(ScanCancelled):
            await make_acquirer().acquire(RasterImage("img", src=CDN_IMAGE), token)


@pytest.mark.asyncio
class TestSvgResources:
    async def test_same_origin_svg_src(self, svg_renderer) -> None:
        transport = RecordingTransport(content=SVG)
        img = RasterImage("img", src="/static/qr.svg")
        result = await make_acquirer(transport).acquire(img, CancelToken())
        assert kinds(result) == [StrategyKind.NESTED_SEARCH]
        assert (result.raster.width, result.raster.height) == (40, 30)
        assert svg_renderer == [SVG]

    async def test_cross_origin_svg_through_fetch_host(self, svg_renderer) -> None:
        fetch_host = FakeFetchHost(HostResponse.ok(encode_data_url(SVG, "image/svg+xml")))
        img = RasterImage("img", src="https://cdn.example.net/qr.svg")
        result = await make_acquirer(RecordingTransport(), fetch_host).acquire(img, CancelToken())
        assert kinds(result)[-1] is StrategyKind.PROXIED_FETCH
        assert result.attempts[-1].succeeded
        assert svg_renderer == [SVG]

    async def test_svg_upload(self, svg_renderer) -> None:
        upload = FileSource(data=SVG, mime_type="image/svg+xml", name="qr.svg")
        result = await make_acquirer().acquire(upload, CancelToken())
        assert kinds(result) == [StrategyKind.NESTED_SEARCH]
        assert (result.raster.width, result.raster.height) == (40, 30)


@pytest.mark.asyncio
class TestFileAndClipboard:
    async def test_file_resolves_through_data_url(self) -> None:
        transport = RecordingTransport()
        upload = FileSource(data=png_bytes(4, 2), mime_type="image/png", name="qr.png")
        result = await make_acquirer(transport).acquire(upload, CancelToken())
        assert kinds(result) == [StrategyKind.NESTED_SEARCH]
        assert (result.raster.width, result.raster.height) == (4, 2)
        assert transport.requests == []

    async def test_non_image_file_is_malformed(self) -> None:
        upload = FileSource(data=b"hello", mime_type="text/plain")
        with pytest.raises(MalformedInput, match="Could not process image"):
            await make_acquirer().acquire(upload, CancelToken())

    async def test_empty_clipboard_item_is_malformed(self) -> None:
        with pytest.raises(MalformedInput, match="Failed to read file"):
            await make_acquirer().acquire(ClipboardItem(data=b"", mime_type="image/png"), CancelToken())

    async def test_mislabelled_image_bytes_are_malformed(self) -> None:
        upload = FileSource(data=b"not really a png", mime_type="image/png")
        with pytest.raises(MalformedInput, match="Failed to load image"):
            await make_acquirer().acquire(upload, CancelToken())


@pytest.mark.asyncio
class TestCapturePage:
    async def test_capture_success(self) -> None:
        capture_host = FakeCaptureHost()
        result = await make_acquirer(capture_host=capture_host).capture_page(CancelToken())
        assert kinds(result) == [StrategyKind.FULL_PAGE_CAPTURE]
        assert (result.raster.width, result.raster.height) == (200, 100)
        assert capture_host.calls == 1

    async def test_capture_failure_is_transport_failure(self) -> None:
        capture_host = FakeCaptureHost(HostResponse.failed("Permission denied"))
        with pytest.raises(TransportFailure, match="Permission denied"):
            await make_acquirer(capture_host=capture_host).capture_page(CancelToken())


@pytest.mark.asyncio
class TestPageImageLoader:
    def _loader(self, transport, max_bytes=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        return PageImageLoader(PAGE_URL, client=client, max_bytes=max_bytes)

    async def test_cross_origin_without_cors_is_blocked_before_fetch(self) -> None:
        transport = RecordingTransport(allow_origin="*")
        with pytest.raises(CrossOriginBlocked):
            await self._loader(transport).load(CDN_IMAGE, CancelToken())
        assert transport.requests == []

    async def test_cors_grant_for_page_origin(self) -> None:
        transport = RecordingTransport(allow_origin="https://shop.example.com")
        raster = await self._loader(transport).load(CDN_IMAGE, CancelToken(), cors_anonymous=True)
        assert raster.width == 8

    async def test_cors_grant_for_other_origin_taints(self) -> None:
        transport = RecordingTransport(allow_origin="https://elsewhere.example")
        with pytest.raises(CrossOriginBlocked):
            await self._loader(transport).load(CDN_IMAGE, CancelToken(), cors_anonymous=True)

    async def test_http_error_status(self) -> None:
        transport = RecordingTransport(status=404)
        with pytest.raises(StrategyFailed, match="404"):
            await self._loader(transport).load("https://shop.example.com/qr.png", CancelToken())

    async def test_oversize_image(self) -> None:
        with pytest.raises(StrategyFailed, match="too large"):
            await self._loader(RecordingTransport(), max_bytes=10).load(
                "https://shop.example.com/qr.png", CancelToken()
            )

    async def test_unsupported_scheme(self) -> None:
        with pytest.raises(StrategyFailed):
            await self._loader(RecordingTransport()).load("blob:abc", CancelToken())


class TestHelpers:
    @pytest.mark.parametrize(
        "url,origin",
        [
            ("https://shop.example.com/a", "https://shop.example.com"),
            ("https://shop.example.com:443/a", "https://shop.example.com"),
            ("http://localhost:8080/", "http://localhost:8080"),
            ("about:blank", "null"),
        ],
    )
    def test_origin_of(self, url: str, origin: str) -> None:
        assert origin_of(url) == origin

    @pytest.mark.parametrize(
        "value,expected",
        [
            ('url("https://x.example/a.png")', "https://x.example/a.png"),
            ("url(/a.png)", "/a.png"),
            ("linear-gradient(red, blue), url('b.png')", "b.png"),
            ("none", None),
            (None, None),
        ],
    )
    def test_css_background_url(self, value, expected) -> None:
        assert css_background_url(value) == expected
