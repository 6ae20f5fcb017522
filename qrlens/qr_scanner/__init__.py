# qrlens/qr_scanner/__init__.py

"""
QR acquisition and decoding package.

Exposes high-level functions:

    decode_raster(raster) -> DecodedPayload | None
    scan_capture(raster, viewport) -> list[LocatedCode]
    extract_url(text) -> str

which:
- Decode the first QR code in an RGBA raster
- Map a code found in a screenshot onto viewport coordinates
- Trim the payload down to the URL it carries, when it carries one

The acquisition chain that produces rasters lives in `strategies`.
"""

from .qr_engine import decode_raster, scan_capture
from .qr_utils import extract_url
