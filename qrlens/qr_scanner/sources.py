# qrlens/qr_scanner/sources.py

"""
Things a user can point the scanner at.

Page elements come in four kinds (pixel surface, raster image, vector
graphic, generic container). Each answers the same three questions the
acquisition strategies ask, so no strategy ever checks a concrete type:

- read_pixels():       the live pixels, for surfaces that already hold them
- resolve_image_url(): an image resource to load
- serialize_markup():  self-contained vector markup

Uploaded files and clipboard items resolve to data URLs, exactly like a
browser FileReader would hand them over.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..errors import CrossOriginBlocked, MalformedInput, StrategyFailed
from .qr_utils import encode_data_url, is_image_mime
from .raster import Raster

_CSS_URL = re.compile(r"url\([\"']?([^\"')]+)[\"']?\)")


def css_background_url(value: Optional[str]) -> Optional[str]:
    """First url(...) inside a computed background-image value."""
    if not value or value == "none":
        return None
    match = _CSS_URL.search(value)
    return match.group(1) if match else None


class ImageSource:
    kind = "source"

    def validate(self) -> None:
        """Raise MalformedInput when the source cannot hold image data."""

    def has_pixel_surface(self) -> bool:
        return False

    def read_pixels(self) -> Raster:
        raise StrategyFailed(f"{self.kind} has no pixel surface")

    def resolve_image_url(self) -> Optional[str]:
        return None

    def own_image_url(self) -> Optional[str]:
        """Image resource the element itself points at, ignoring styling."""
        return None

    def serialize_markup(self) -> Optional[str]:
        return None

    def describe(self) -> str:
        return self.kind


@dataclass(eq=False)
class PageElement(ImageSource):
    element_id: str

    def describe(self) -> str:
        return f"{self.kind}#{self.element_id}"


@dataclass(eq=False)
class PixelSurface(PageElement):
    """A canvas-like element whose pixels can be read in place."""

    raster: Optional[Raster] = None
    tainted: bool = False
    kind = "pixel-surface"

    def has_pixel_surface(self) -> bool:
        return True

    def read_pixels(self) -> Raster:
        if self.tainted:
            raise CrossOriginBlocked("The canvas has been tainted by cross-origin data")
        if self.raster is None:
            raise StrategyFailed("Canvas is empty")
        return self.raster


@dataclass(eq=False)
class RasterImage(PageElement):
    src: Optional[str] = None
    data_src: Optional[str] = None
    background_image: Optional[str] = None
    kind = "raster-image"

    def own_image_url(self) -> Optional[str]:
        return self.src or self.data_src

    def resolve_image_url(self) -> Optional[str]:
        return self.own_image_url() or css_background_url(self.background_image)


@dataclass(eq=False)
class VectorGraphic(PageElement):
    markup: str = ""
    kind = "vector-graphic"

    def serialize_markup(self) -> Optional[str]:
        return self.markup or None


@dataclass(eq=False)
class GenericContainer(PageElement):
    """Any other element: resolved through its background or a nested image."""

    background_image: Optional[str] = None
    children: Sequence[PageElement] = field(default_factory=tuple)
    kind = "generic-container"

    def resolve_image_url(self) -> Optional[str]:
        url = css_background_url(self.background_image)
        if url:
            return url
        for child in self.children:
            nested = child.own_image_url()
            if nested:
                return nested
        return None


@dataclass(eq=False)
class FileSource(ImageSource):
    """An uploaded or dropped file."""

    data: bytes
    mime_type: str
    name: str = ""
    kind = "file"

    def validate(self) -> None:
        if not is_image_mime(self.mime_type):
            raise MalformedInput("Could not process image")
        if not self.data:
            raise MalformedInput("Failed to read file")

    def resolve_image_url(self) -> Optional[str]:
        return encode_data_url(self.data, self.mime_type)


@dataclass(eq=False)
class ClipboardItem(FileSource):
    kind = "clipboard"
