# qrlens/qr_scanner/qr_engine.py

"""
Decoder: raster in, first QR payload (or nothing) out.

The bit-level decoding is delegated to a primitive with the signature
`(pixels, width, height) -> PrimitiveHit | None`. Two primitives ship:
pyzbar (default) and OpenCV's QRCodeDetector.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .. import config
from .raster import BoundingBox, DecodedPayload, LocatedCode, Raster, flatten_to_gray

logger = logging.getLogger("qrlens.decode")

Point = Tuple[float, float]


@dataclass(frozen=True)
class PrimitiveHit:
    text: str
    points: Tuple[Point, ...] = ()


Primitive = Callable[[np.ndarray, int, int], Optional[PrimitiveHit]]


# ---------------------------------------------------------
# PRIMITIVES
# ---------------------------------------------------------
def zbar_primitive(pixels: np.ndarray, width: int, height: int) -> Optional[PrimitiveHit]:
    from pyzbar.pyzbar import ZBarSymbol
    from pyzbar.pyzbar import decode as decode_zbar

    gray = flatten_to_gray(pixels)
    for obj in decode_zbar(gray, symbols=[ZBarSymbol.QRCODE]):
        raw = obj.data.decode("utf-8", errors="replace")
        polygon = tuple((float(p.x), float(p.y)) for p in obj.polygon)
        if not polygon:
            r = obj.rect
            polygon = (
                (float(r.left), float(r.top)),
                (float(r.left + r.width), float(r.top + r.height)),
            )
        return PrimitiveHit(text=raw, points=polygon)
    return None


def opencv_primitive(pixels: np.ndarray, width: int, height: int) -> Optional[PrimitiveHit]:
    detector = cv2.QRCodeDetector()
    img = cv2.cvtColor(flatten_to_gray(pixels), cv2.COLOR_GRAY2BGR)
    try:
        txt, pts, _ = detector.detectAndDecode(img)
    except cv2.error:
        return None
    if not txt:
        return None
    points: Tuple[Point, ...] = ()
    if pts is not None:
        points = tuple((float(x), float(y)) for x, y in np.asarray(pts).reshape(-1, 2))
    return PrimitiveHit(text=txt, points=points)


PRIMITIVES: Dict[str, Primitive] = {
    "pyzbar": zbar_primitive,
    "opencv": opencv_primitive,
}


def get_primitive(name: Optional[str] = None) -> Primitive:
    name = name or config.DECODER
    try:
        return PRIMITIVES[name]
    except KeyError:
        raise ValueError(f"Unknown QR decoder '{name}'") from None


# ---------------------------------------------------------
# DECODING
# ---------------------------------------------------------
def _bounding_box(points: Sequence[Point]) -> Optional[BoundingBox]:
    if not points:
        return None
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


def decode_raster(raster: Raster, primitive: Optional[Primitive] = None) -> Optional[DecodedPayload]:
    """Return the first code in `raster`, or None when nothing decodes."""
    primitive = primitive or get_primitive()
    hit = primitive(raster.pixels, raster.width, raster.height)
    if hit is None:
        logger.info(json.dumps({"event": "decode", "found": False, "size": [raster.width, raster.height]}))
        return None

    logger.info(
        json.dumps(
            {
                "event": "decode",
                "found": True,
                "size": [raster.width, raster.height],
                "content_preview": hit.text[:120],
            }
        )
    )
    return DecodedPayload(text=hit.text, location=_bounding_box(hit.points))


def scan_capture(
    raster: Raster,
    viewport: Tuple[float, float],
    primitive: Optional[Primitive] = None,
) -> List[LocatedCode]:
    """
    Decode a full-page screenshot and map the hit onto viewport coordinates.

    Screenshots are usually taken at device-pixel resolution, so the click
    target is scaled by viewport / raster size on each axis independently.
    """
    payload = decode_raster(raster, primitive)
    if payload is None:
        return []

    scale_x = viewport[0] / raster.width
    scale_y = viewport[1] / raster.height
    box = payload.location or BoundingBox(0, 0, raster.width, raster.height)
    return [
        LocatedCode(
            payload=payload,
            image_width=raster.width,
            image_height=raster.height,
            screen_box=box.scaled(scale_x, scale_y),
        )
    ]
