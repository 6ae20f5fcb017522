# qrlens/qr_scanner/qr_utils.py

"""
Utility helpers for QR payload cleanup and image byte handling.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from typing import Optional, Tuple
from urllib.parse import unquote_to_bytes

from PIL import Image, UnidentifiedImageError

from .. import config
from ..errors import MalformedInput
from .raster import Raster


# scheme://token, first match wins
URL_PATTERN = re.compile(r"[a-z][a-z0-9+.\-]*://[^\s<>\"']+", re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)]+$")

DATA_URL_PATTERN = re.compile(
    r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^;,]*)*?)(?P<b64>;base64)?,(?P<data>.*)$",
    re.IGNORECASE | re.DOTALL,
)


def extract_url(content: Optional[str]) -> Optional[str]:
    """
    Pull the first scheme-qualified URL out of a messy QR payload.

    Loyalty-card style codes often look like "316254 http://... Name: x";
    we return just the URL with trailing punctuation removed, or the
    original text when nothing URL-shaped is present.
    """
    if not content:
        return content

    match = URL_PATTERN.search(content)
    if not match:
        return content
    return TRAILING_PUNCTUATION.sub("", match.group(0))


def is_image_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower().startswith("image/")


# -------------------------------------------------------------------
# DATA URLS
# -------------------------------------------------------------------

def encode_data_url(data: bytes, mime_type: str = "application/octet-stream") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(url: str) -> Tuple[str, bytes]:
    """Split a data URL into (mime type, raw bytes)."""
    match = DATA_URL_PATTERN.match(url.strip())
    if not match:
        raise MalformedInput("Failed to read image data")

    mime = match.group("mime") or "text/plain"
    data = match.group("data")
    if match.group("b64"):
        try:
            raw = base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise MalformedInput("Failed to read image data") from exc
    else:
        raw = unquote_to_bytes(data)
    return mime.lower(), raw


# -------------------------------------------------------------------
# IMAGE LOADING
# -------------------------------------------------------------------

def load_image_bytes(image_bytes: bytes) -> Image.Image:
    """Robust loader from raw bytes → PIL image."""
    bio = io.BytesIO(image_bytes)
    try:
        img = Image.open(bio)
        img.load()
    except Image.DecompressionBombError as exc:
        raise MalformedInput("Image too large") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise MalformedInput("Failed to load image") from exc
    return img


def is_svg(image_bytes: bytes, mime_type: Optional[str] = None) -> bool:
    if mime_type and mime_type.lower().split(";")[0].strip() == "image/svg+xml":
        return True
    head = image_bytes[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


def raster_from_bytes(image_bytes: bytes, mime_type: Optional[str] = None) -> Raster:
    if is_svg(image_bytes, mime_type):
        return rasterize_svg(image_bytes, config.SVG_DEFAULT_SIZE)
    return Raster.from_image(load_image_bytes(image_bytes))


def raster_from_data_url(url: str) -> Raster:
    mime, raw = decode_data_url(url)
    return raster_from_bytes(raw, mime)


def rasterize_svg(markup: bytes, default_size: int = 200) -> Raster:
    """
    Render serialized SVG markup to a raster.

    Markup without intrinsic width/height is laid out against a
    default_size x default_size box.
    """
    try:
        import cairosvg

        png = cairosvg.svg2png(
            bytestring=markup,
            parent_width=default_size,
            parent_height=default_size,
        )
    except Exception as exc:
        # cairosvg surfaces parse and render failures as assorted types
        raise MalformedInput("Failed to load image") from exc
    return Raster.from_image(load_image_bytes(png))
