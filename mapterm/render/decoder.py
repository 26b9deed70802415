"""
Raster decoding: server image bytes → immutable RGBA pixel buffer.

Accepts anything Pillow can identify (PNG, JPEG and GIF from WMS
servers in practice).  The decoded buffer is read-only; compositing
always works on a copy.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

log = logging.getLogger(__name__)


class DecodeError(Exception):
    """Image bytes could not be decoded."""


@dataclass(frozen=True)
class RasterImage:
    """Decoded image as an ``(height, width, 4)`` uint8 RGBA array."""
    pixels: np.ndarray
    source_format: str = ""

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def copy_pixels(self) -> np.ndarray:
        """Writable copy for drawing."""
        return np.array(self.pixels, dtype=np.uint8, copy=True)

    @classmethod
    def from_pil(cls, img: Image.Image, source_format: str = "") -> "RasterImage":
        arr = np.array(img.convert("RGBA"), dtype=np.uint8)
        arr.setflags(write=False)
        return cls(pixels=arr, source_format=source_format)


def decode_image(data: bytes) -> RasterImage:
    """Decode *data* into a :class:`RasterImage`.

    Raises
    ------
    DecodeError
        Empty, unrecognised, truncated or oversized image data.
    """
    if not data:
        raise DecodeError("empty image data")
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            fmt = img.format or ""
            raster = RasterImage.from_pil(img, source_format=fmt)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError,
            SyntaxError) as exc:
        log.warning("Image decode failed (%d bytes): %s", len(data), exc)
        raise DecodeError(f"cannot decode image: {exc}") from exc
    log.debug("Decoded %s image %dx%d", fmt or "?", raster.width, raster.height)
    return raster
