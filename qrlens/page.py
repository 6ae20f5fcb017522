# qrlens/page.py

"""
Page context the scanner runs in: candidate elements, viewport geometry,
an event-listener registry and the slot holding the active scan session.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .qr_scanner.loader import origin_of
from .qr_scanner.sources import PageElement

DOCUMENT = "document"
OVERLAY = "overlay"

Handler = Callable[[Any], Awaitable[None]]


class Page:
    def __init__(
        self,
        url: str = "about:blank",
        elements: Iterable[PageElement] = (),
        viewport: Tuple[float, float] = (1280, 800),
        window_context: Optional[Tuple[int, int, int, int]] = None,
    ):
        self.url = url
        self.origin = origin_of(url)
        self.elements: List[PageElement] = list(elements)
        self.viewport = viewport
        self.window_context = window_context
        self.session = None
        self.selectable: Set[str] = set()
        self._listeners: Dict[Tuple[str, str], List[Handler]] = {}

    def element(self, element_id: str) -> PageElement:
        for el in self.elements:
            if el.element_id == element_id:
                return el
        raise KeyError(element_id)

    def candidates(self) -> List[PageElement]:
        return list(self.elements)

    # -------------------------
    # listeners
    # -------------------------
    def add_listener(self, target: str, event: str, handler: Handler) -> None:
        self._listeners.setdefault((target, event), []).append(handler)

    def remove_listener(self, target: str, event: str, handler: Handler) -> None:
        handlers = self._listeners.get((target, event))
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._listeners[(target, event)]

    def listener_count(self, target: Optional[str] = None, event: Optional[str] = None) -> int:
        return sum(
            len(handlers)
            for (t, e), handlers in self._listeners.items()
            if (target is None or t == target) and (event is None or e == event)
        )

    async def dispatch(self, target: str, event: str, payload: Any = None) -> int:
        """Deliver an event to every current listener; returns how many ran."""
        handlers = list(self._listeners.get((target, event), ()))
        for handler in handlers:
            await handler(payload)
        return len(handlers)
