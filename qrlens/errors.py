# qrlens/errors.py

"""
Failure taxonomy for the scan pipeline.

Every `ScanError` carries a human-readable `reason` that the session
controller shows verbatim in a ResultError.
"""

from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    reason = "Scan failed"

    def __init__(self, reason: Optional[str] = None):
        if reason:
            self.reason = reason
        super().__init__(self.reason)


class AcquisitionExhausted(ScanError):
    """Every applicable acquisition strategy failed."""

    reason = 'Cannot load image. Try "Scan Visible Page" or upload instead.'

    def __init__(self, reason: Optional[str] = None, attempts=()):
        super().__init__(reason)
        self.attempts = tuple(attempts)


class DecodeEmpty(ScanError):
    """A raster was obtained but it holds no readable code."""

    reason = "No QR code found"


class TransportFailure(ScanError):
    """A privileged collaborator answered with a non-success status."""

    reason = "Failed"

    def __init__(self, reason: Optional[str] = None, status: Optional[int] = None):
        super().__init__(reason)
        self.status = status


class MalformedInput(ScanError):
    """File or clipboard data is not an image."""

    reason = "Could not process image"


class StrategyFailed(Exception):
    """One acquisition strategy could not produce a raster."""


class CrossOriginBlocked(StrategyFailed):
    """Rasterizing the resource would taint the surface."""


class ScanCancelled(Exception):
    """Raised at a suspension point once the owning session is cancelled."""
