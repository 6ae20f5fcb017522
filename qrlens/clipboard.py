# qrlens/clipboard.py

from __future__ import annotations

import asyncio
from typing import List, Protocol


class ClipboardSink(Protocol):
    async def write_text(self, text: str) -> None:
        ...


class MemoryClipboard:
    def __init__(self) -> None:
        self.history: List[str] = []

    @property
    def text(self) -> str:
        return self.history[-1] if self.history else ""

    async def write_text(self, text: str) -> None:
        self.history.append(text)


class TkClipboard:
    """System clipboard through a hidden Tk root."""

    def _write(self, text: str) -> None:
        import tkinter

        root = tkinter.Tk()
        root.withdraw()
        try:
            root.clipboard_clear()
            root.clipboard_append(text)
            root.update()
        finally:
            root.destroy()

    async def write_text(self, text: str) -> None:
        await asyncio.to_thread(self._write, text)
