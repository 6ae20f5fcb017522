# qrlens/session.py

"""
Scan session state machine.

    Idle -> Selecting -> Decoding -> ResultError | ResultSuccess -> Analyzed

"Scan again" goes from any result state back to Selecting; cancel (escape,
close, overlay click) goes from anywhere to Idle and detaches every
listener the session registered. A page holds at most one live session;
starting again while one is live hands back the same session.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .cancel import CancelToken
from .clipboard import ClipboardSink, TkClipboard
from .errors import DecodeEmpty, ScanCancelled, ScanError
from .page import DOCUMENT, OVERLAY, Handler, Page
from .qr_scanner.qr_engine import Primitive, decode_raster, scan_capture
from .qr_scanner.qr_utils import extract_url, is_image_mime
from .qr_scanner.raster import LocatedCode
from .qr_scanner.sources import ClipboardItem, FileSource, ImageSource
from .qr_scanner.strategies import Acquisition, ImageAcquirer
from .result_store import ResultStore, build_result_store
from .url_scanner import RiskAssessment, analyze_url, parse_url

logger = logging.getLogger("qrlens.session")

CODE_TARGET_PREFIX = "qr-target:"


class SessionState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    DECODING = "decoding"
    RESULT_ERROR = "result-error"
    RESULT_SUCCESS = "result-success"
    ANALYZED = "analyzed"


RESULT_STATES = (SessionState.RESULT_SUCCESS, SessionState.RESULT_ERROR, SessionState.ANALYZED)


@dataclass(frozen=True)
class ScanResult:
    payload: Optional[str] = None
    is_url: bool = False
    reason: Optional[str] = None
    error_type: Optional[str] = None
    assessment: Optional[RiskAssessment] = None

    @property
    def success(self) -> bool:
        return self.reason is None

    def as_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"reason": self.reason}
        out: Dict[str, Any] = {"payload": self.payload, "is_url": self.is_url}
        if self.assessment is not None:
            out["assessment"] = self.assessment.as_dict()
        return out


@dataclass(eq=False)
class ScanSession:
    page: Page
    state: SessionState = SessionState.IDLE
    selection_targets: Set[str] = field(default_factory=set)
    pending_page_codes: List[LocatedCode] = field(default_factory=list)
    result: Optional[ScanResult] = None
    token: CancelToken = field(default_factory=CancelToken)
    listeners: List[Tuple[str, str, Handler]] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.state is not SessionState.IDLE


class SessionController:
    def __init__(
        self,
        page: Page,
        acquirer: ImageAcquirer,
        result_store: Optional[ResultStore] = None,
        clipboard: Optional[ClipboardSink] = None,
        primitive: Optional[Primitive] = None,
    ):
        self.page = page
        self.acquirer = acquirer
        self.result_store = result_store if result_store is not None else build_result_store()
        self.clipboard = clipboard if clipboard is not None else TkClipboard()
        self.primitive = primitive

    @property
    def session(self) -> Optional[ScanSession]:
        return self.page.session

    @property
    def state(self) -> SessionState:
        session = self.page.session
        return session.state if session is not None else SessionState.IDLE

    # ---------------------------------------------------------
    # bookkeeping
    # ---------------------------------------------------------
    def _log(self, event: str, **extra: Any) -> None:
        payload = {"event": event, "page": self.page.url, "state": self.state.value}
        payload.update(extra)
        logger.info(json.dumps(payload))

    def _transition(self, session: ScanSession, state: SessionState) -> None:
        previous = session.state
        session.state = state
        self._log("transition", previous=previous.value)

    def _listen(self, session: ScanSession, target: str, event: str, handler: Handler) -> None:
        self.page.add_listener(target, event, handler)
        session.listeners.append((target, event, handler))

    def _unlisten(self, session: ScanSession, targets: Set[str]) -> None:
        keep = []
        for target, event, handler in session.listeners:
            if target in targets:
                self.page.remove_listener(target, event, handler)
            else:
                keep.append((target, event, handler))
        session.listeners = keep

    def _is_current(self, session: ScanSession) -> bool:
        return self.page.session is session and not session.token.cancelled

    def _accepting(self, trigger: str) -> Optional[ScanSession]:
        session = self.page.session
        if session is None or session.state is not SessionState.SELECTING:
            self._log("trigger_ignored", trigger=trigger)
            return None
        return session

    # ---------------------------------------------------------
    # lifecycle
    # ---------------------------------------------------------
    def start(self) -> ScanSession:
        existing = self.page.session
        if existing is not None and existing.active:
            self._log("session_reused")
            return existing

        self.result_store.clear()
        session = ScanSession(page=self.page)
        self.page.session = session
        self._listen(session, DOCUMENT, "keydown", partial(self._on_keydown, session))
        self._listen(session, DOCUMENT, "paste", partial(self._on_paste, session))
        self._listen(session, OVERLAY, "click", partial(self._on_overlay_click, session))
        self._enter_selecting(session)
        return session

    def _enter_selecting(self, session: ScanSession) -> None:
        session.result = None
        self._clear_code_targets(session)
        for element in self.page.candidates():
            session.selection_targets.add(element.element_id)
            self.page.selectable.add(element.element_id)
            self._listen(session, element.element_id, "click", partial(self._on_element_click, session, element))
        self._transition(session, SessionState.SELECTING)

    def _detach_selection(self, session: ScanSession) -> None:
        self._unlisten(session, session.selection_targets)
        self.page.selectable.difference_update(session.selection_targets)
        session.selection_targets.clear()

    def _clear_code_targets(self, session: ScanSession) -> None:
        targets = {t for t, _, _ in session.listeners if t.startswith(CODE_TARGET_PREFIX)}
        self._unlisten(session, targets)
        session.pending_page_codes = []

    def scan_again(self) -> Optional[ScanSession]:
        session = self.page.session
        if session is None or session.state not in RESULT_STATES:
            self._log("trigger_ignored", trigger="scan_again")
            return None
        self._enter_selecting(session)
        return session

    def cancel(self) -> None:
        session = self.page.session
        if session is None:
            return
        session.token.cancel()
        self._detach_selection(session)
        self._unlisten(session, {t for t, _, _ in session.listeners})
        session.pending_page_codes = []
        self._transition(session, SessionState.IDLE)
        self.page.session = None

    # ---------------------------------------------------------
    # page events
    # ---------------------------------------------------------
    async def _on_keydown(self, session: ScanSession, key: Any) -> None:
        if key == "Escape" and self._is_current(session):
            self.cancel()

    async def _on_overlay_click(self, session: ScanSession, _event: Any) -> None:
        if self._is_current(session):
            self.cancel()

    async def _on_paste(self, session: ScanSession, items: Optional[Sequence[ClipboardItem]]) -> None:
        if not self._is_current(session):
            return
        for item in items or ():
            if is_image_mime(item.mime_type):
                await self.provide_clipboard(item)
                return

    async def _on_element_click(self, session: ScanSession, element: ImageSource, _event: Any) -> None:
        if self._is_current(session):
            await self.choose_element(element)

    async def _on_code_click(self, session: ScanSession, index: int, _event: Any) -> None:
        if self._is_current(session):
            self.choose_code(index)

    # ---------------------------------------------------------
    # acquisition + decode
    # ---------------------------------------------------------
    async def choose_element(self, element: ImageSource) -> Optional[ScanResult]:
        return await self._scan(element, "No QR code found")

    async def provide_file(self, file: FileSource) -> Optional[ScanResult]:
        return await self._scan(file, "No QR code found in image")

    async def provide_clipboard(self, item: ClipboardItem) -> Optional[ScanResult]:
        return await self._scan(item, "No QR code found in image")

    async def _scan(self, source: ImageSource, empty_reason: str) -> Optional[ScanResult]:
        return await self._run(
            source.describe(),
            lambda token: self.acquirer.acquire(source, token),
            lambda session, acquisition: self._decode_single(session, acquisition, empty_reason),
        )

    async def scan_page(self) -> Optional[ScanResult]:
        return await self._run(
            "full-page",
            lambda token: self.acquirer.capture_page(token, self.page.window_context),
            self._decode_page,
        )

    async def _decode_single(self, session: ScanSession, acquisition: Acquisition, empty_reason: str) -> str:
        payload = await session.token.guard(asyncio.to_thread(decode_raster, acquisition.raster, self.primitive))
        if payload is None:
            raise DecodeEmpty(empty_reason)
        return payload.text

    async def _decode_page(self, session: ScanSession, acquisition: Acquisition) -> str:
        codes = await session.token.guard(
            asyncio.to_thread(scan_capture, acquisition.raster, self.page.viewport, self.primitive)
        )
        if not codes:
            raise DecodeEmpty("No QR codes found on page")
        session.pending_page_codes = codes
        for index in range(len(codes)):
            target = f"{CODE_TARGET_PREFIX}{index}"
            self._listen(session, target, "click", partial(self._on_code_click, session, index))
        return codes[0].text

    async def _run(
        self,
        trigger: str,
        acquire: Callable[[CancelToken], Awaitable[Acquisition]],
        decode: Callable[[ScanSession, Acquisition], Awaitable[str]],
    ) -> Optional[ScanResult]:
        session = self._accepting(trigger)
        if session is None:
            return None

        self._detach_selection(session)
        self._transition(session, SessionState.DECODING)
        token = session.token
        try:
            acquisition = await acquire(token)
            token.raise_if_cancelled()
            text = await decode(session, acquisition)
        except ScanCancelled:
            self._log("late_result_discarded", trigger=trigger)
            return None
        except ScanError as exc:
            if not self._is_current(session):
                self._log("late_result_discarded", trigger=trigger)
                return None
            return self._fail(session, exc)
        except Exception:
            logger.exception(json.dumps({"event": "scan_crashed", "trigger": trigger, "page": self.page.url}))
            if not self._is_current(session):
                return None
            return self._fail(session, ScanError())

        if not self._is_current(session):
            self._log("late_result_discarded", trigger=trigger)
            return None
        return self._succeed(session, text)

    def _succeed(self, session: ScanSession, text: str) -> ScanResult:
        payload = extract_url(text)
        result = ScanResult(payload=payload, is_url=parse_url(payload) is not None)
        session.result = result
        self._transition(session, SessionState.RESULT_SUCCESS)
        self.result_store.record_success(payload)
        self._log("scan_result", success=True, is_url=result.is_url, content_preview=payload[:120])
        return result

    def _fail(self, session: ScanSession, exc: ScanError) -> ScanResult:
        result = ScanResult(reason=exc.reason, error_type=type(exc).__name__)
        session.result = result
        self._transition(session, SessionState.RESULT_ERROR)
        self.result_store.record_error(exc.reason)
        self._log("scan_result", success=False, reason=exc.reason, error_type=result.error_type)
        return result

    # ---------------------------------------------------------
    # result actions
    # ---------------------------------------------------------
    def choose_code(self, index: int) -> Optional[ScanResult]:
        """Show one of the codes located by a full-page scan."""
        session = self.page.session
        if session is None or session.state not in (SessionState.RESULT_SUCCESS, SessionState.ANALYZED):
            return None
        if not 0 <= index < len(session.pending_page_codes):
            return None
        text = session.pending_page_codes[index].text
        self._clear_code_targets(session)
        return self._succeed(session, text)

    def analyze(self) -> Optional[RiskAssessment]:
        session = self.page.session
        if session is None or session.result is None:
            return None
        if session.state is SessionState.ANALYZED:
            return session.result.assessment
        if session.state is not SessionState.RESULT_SUCCESS or not session.result.is_url:
            return None

        assessment = analyze_url(session.result.payload)
        session.result = replace(session.result, assessment=assessment)
        self._transition(session, SessionState.ANALYZED)
        self._log("analyzed", risk_level=str(assessment.risk_level), warnings=len(assessment.warnings))
        return assessment

    async def copy(self) -> bool:
        session = self.page.session
        if session is None or session.result is None or not session.result.success:
            return False
        await self.clipboard.write_text(session.result.payload or "")
        return True
