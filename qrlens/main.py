# main.py

from __future__ import annotations

import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import sentry_sdk
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from qrlens import config
from qrlens.clipboard import MemoryClipboard
from qrlens.host import HttpFetchHost, ScreenCaptureHost, is_public_url, reject_internal_targets
from qrlens.models import (
    AnalyzeRequest,
    FetchRequest,
    LastResultResponse,
    RiskResponse,
    ScanResponse,
)
from qrlens.page import Page
from qrlens.qr_scanner.loader import PageImageLoader
from qrlens.qr_scanner.qr_utils import extract_url
from qrlens.qr_scanner.sources import FileSource, RasterImage
from qrlens.qr_scanner.strategies import ImageAcquirer
from qrlens.result_store import ResultStore, build_result_store
from qrlens.session import ScanResult, SessionController
from qrlens.url_scanner import analyze_url

if config.SENTRY_DSN:
    sentry_sdk.init(dsn=config.SENTRY_DSN, traces_sample_rate=0.2)

logger = logging.getLogger("qrlens")
logging.basicConfig(level=logging.INFO, format="%(message)s")

ERROR_STATUS = {
    "MalformedInput": 400,
    "DecodeEmpty": 422,
    "TransportFailure": 502,
    "AcquisitionExhausted": 502,
}

_http_client: Optional[httpx.AsyncClient] = None
_result_store: Optional[ResultStore] = None


# ---------------------------------------------------------
# Collaborators (overridable in tests)
# ---------------------------------------------------------
def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=config.FETCH_TIMEOUT,
            follow_redirects=True,
            event_hooks={"request": [reject_internal_targets]},
        )
    return _http_client


def get_result_store() -> ResultStore:
    global _result_store
    if _result_store is None:
        _result_store = build_result_store()
    return _result_store


def get_acquirer_factory(client: httpx.AsyncClient = Depends(get_http_client)):
    def build(page_url: str) -> ImageAcquirer:
        return ImageAcquirer(
            loader=PageImageLoader(page_url, client=client),
            fetch_host=HttpFetchHost(client),
            capture_host=ScreenCaptureHost(),
        )

    return build


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _http_client is not None:
        await _http_client.aclose()


app = FastAPI(title="QR Lens API", lifespan=lifespan)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(json.dumps({"event": "error", "path": str(request.url), "error": str(exc)}))
    return JSONResponse({"error": "Internal server error."}, status_code=500)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request.", "detail": jsonable_encoder(exc.errors())}, status_code=422)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    request_id = secrets.token_hex(8)
    request.state.request_id = request_id
    start_time = time.time()
    response = await call_next(request)
    duration = round((time.time() - start_time) * 1000, 2)
    logger.info(
        json.dumps(
            {
                "event": "request",
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": duration,
            }
        )
    )
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _scan_response(result: Optional[ScanResult]) -> JSONResponse:
    if result is None:
        return JSONResponse({"error": "Scan was cancelled."}, status_code=409)
    if not result.success:
        status = ERROR_STATUS.get(result.error_type or "", 500)
        return JSONResponse({"error": result.reason}, status_code=status)
    body = ScanResponse(payload=result.payload or "", is_url=result.is_url)
    return JSONResponse(body.model_dump())


async def _run_scan(controller: SessionController, action) -> Optional[ScanResult]:
    controller.start()
    try:
        return await action(controller)
    finally:
        controller.cancel()


# ---------------------------------------------------------
# ROUTES
# ---------------------------------------------------------
@app.post("/qr")
async def qr(
    request: Request,
    image: UploadFile = File(...),
    store: ResultStore = Depends(get_result_store),
    build_acquirer=Depends(get_acquirer_factory),
):
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > config.MAX_IMAGE_BYTES:
        return JSONResponse({"error": "Image too large. Max 5MB."}, status_code=413)

    img_bytes = await image.read()
    if len(img_bytes) > config.MAX_IMAGE_BYTES:
        return JSONResponse({"error": "Image too large. Max 5MB."}, status_code=413)

    upload = FileSource(
        data=img_bytes,
        mime_type=image.content_type or "application/octet-stream",
        name=image.filename or "upload",
    )
    page = Page(url="about:blank")
    controller = SessionController(page, build_acquirer(page.url), result_store=store, clipboard=MemoryClipboard())
    result = await _run_scan(controller, lambda c: c.provide_file(upload))
    return _scan_response(result)


@app.post("/qr/fetch")
async def qr_fetch(
    body: FetchRequest,
    store: ResultStore = Depends(get_result_store),
    build_acquirer=Depends(get_acquirer_factory),
):
    if not await is_public_url(body.url):
        return JSONResponse({"error": "Image URL must be a public http(s) address."}, status_code=400)

    page_url = body.page_url or body.url
    element = RasterImage(element_id="remote-image", src=body.url)
    page = Page(url=page_url, elements=[element])
    controller = SessionController(page, build_acquirer(page_url), result_store=store, clipboard=MemoryClipboard())
    result = await _run_scan(controller, lambda c: c.choose_element(element))
    return _scan_response(result)


@app.post("/analyze")
def analyze(body: AnalyzeRequest):
    content = extract_url(body.content.strip()) or ""
    assessment = analyze_url(content)
    return RiskResponse(content=content, **assessment.as_dict())


@app.get("/qr/last")
def last_result(store: ResultStore = Depends(get_result_store)):
    entry = store.read()
    if entry is None:
        return JSONResponse({"error": "No recent scan result."}, status_code=404)
    return LastResultResponse(
        action=entry.action,
        success=entry.success,
        data=entry.data,
        error=entry.error,
        timestamp=entry.timestamp,
    )
