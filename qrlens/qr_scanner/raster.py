# qrlens/qr_scanner/raster.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
from PIL import Image


@dataclass(frozen=True)
class Raster:
    """
    RGBA pixel buffer, row-major, shape (height, width, 4).

    The array is copied on construction and flagged read-only so nothing
    downstream (decoder, primitives) can mutate it.
    """

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        arr = np.array(self.pixels, dtype=np.uint8, copy=True)
        if arr.ndim == 1:
            arr = arr.reshape((self.height, self.width, 4))
        if arr.shape != (self.height, self.width, 4):
            raise ValueError(
                f"pixel buffer shape {arr.shape} does not match {self.width}x{self.height} RGBA"
            )
        arr.setflags(write=False)
        object.__setattr__(self, "pixels", arr)

    @classmethod
    def from_image(cls, img: Image.Image) -> "Raster":
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return cls(width=img.width, height=img.height, pixels=np.asarray(img))

    def to_gray(self) -> np.ndarray:
        return flatten_to_gray(self.pixels)


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def scaled(self, scale_x: float, scale_y: float) -> "BoundingBox":
        return BoundingBox(
            x=self.x * scale_x,
            y=self.y * scale_y,
            width=self.width * scale_x,
            height=self.height * scale_y,
        )


@dataclass(frozen=True)
class DecodedPayload:
    text: str
    location: Optional[BoundingBox] = None


@dataclass(frozen=True)
class LocatedCode:
    """A code found by a full-page scan, with its on-screen click target."""

    payload: DecodedPayload
    image_width: int
    image_height: int
    screen_box: BoundingBox

    @property
    def text(self) -> str:
        return self.payload.text


def flatten_to_gray(pixels: np.ndarray) -> np.ndarray:
    """Grayscale copy of an RGBA buffer with transparency flattened onto white."""
    rgba = pixels.astype(np.float32)
    alpha = rgba[:, :, 3:4] / 255.0
    rgb = rgba[:, :, :3] * alpha + 255.0 * (1.0 - alpha)
    return cv2.cvtColor(rgb.astype(np.uint8), cv2.COLOR_RGB2GRAY)
