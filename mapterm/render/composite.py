"""
Overlay compositing for the map preview.

Draws, on a fresh copy of the decoded map:
  1. Crosshair: full-height + full-width red lines through the crosshair
     pixel and a 3×3 white centre marker (only with overlays enabled).
  2. Annotation bar: translucent black band across the top
     (only with overlays enabled).
  3. Legend: translucent backdrop + legend pixels in the bottom-left
     corner, or a yellow placeholder box while no legend is cached.
  4. Feature-info box: translucent dark-blue box with a border and an
     "i" glyph in the bottom-right corner while feature info is shown.

then re-encodes to PNG.  Blending is linear per channel,
``out = base * (1 - a) + overlay * a``, and every touched pixel ends up
fully opaque.  Nothing here depends on time or randomness, so identical
inputs give byte-identical PNGs.

Usage
-----
    renderer = CompositeRenderer()
    png = renderer.render(raster, OverlayState(crosshair=(0.5, 0.5)),
                          legend=None, fallback=raw_bytes)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from .decoder import RasterImage

log = logging.getLogger(__name__)

Color = Tuple[int, int, int, int]

# Crosshair
LINE_COLOR: Color = (255, 68, 68, 255)
CENTER_COLOR: Color = (255, 255, 255, 255)

# Annotation bar
TOP_BAR_HEIGHT = 20
TOP_BAR_COLOR: Color = (0, 0, 0, 200)

# Legend (bottom-left)
LEGEND_PADDING = 10
LEGEND_BG_PADDING = 5
LEGEND_BG_COLOR: Color = (0, 0, 0, 180)
PLACEHOLDER_SIZE = (60, 40)
PLACEHOLDER_COLOR: Color = (255, 200, 0, 255)  # written opaque, not blended
PLACEHOLDER_BORDER: Color = (200, 150, 0, 255)

# Feature info (bottom-right)
INFO_BOX_SIZE = (150, 80)
INFO_PADDING = 10
INFO_BG_COLOR: Color = (0, 50, 100, 220)
INFO_BORDER_COLOR: Color = (100, 150, 255, 255)
INFO_ICON_COLOR: Color = (255, 255, 255, 255)


@dataclass
class LegendCache:
    """Legend bitmap fetched once per preview, after the first map."""
    image: Optional[RasterImage] = None
    requested: bool = False
    fetched: bool = False

    def store(self, image: Optional[RasterImage]) -> None:
        self.image = image
        self.fetched = True


@dataclass(frozen=True)
class OverlayState:
    """Everything besides the pixels that affects a composite."""
    crosshair: Tuple[float, float] = (0.5, 0.5)
    show_overlay: bool = True
    show_feature_info: bool = False


# ── Pixel helpers ─────────────────────────────────────────────────────

def _clip(
    x0: int, y0: int, x1: int, y1: int, width: int, height: int,
) -> Optional[Tuple[slice, slice]]:
    """Intersect the half-open rect with the image; None when empty."""
    cx0, cy0 = max(x0, 0), max(y0, 0)
    cx1, cy1 = min(x1, width), min(y1, height)
    if cx0 >= cx1 or cy0 >= cy1:
        return None
    return slice(cy0, cy1), slice(cx0, cx1)


def blend_colors(base: np.ndarray, color: Color) -> np.ndarray:
    """Linear alpha blend of *color* over *base* (…×4 uint8), opaque result."""
    alpha = color[3] / 255.0
    out = np.empty_like(base)
    rgb = base[..., :3].astype(np.float64) * (1.0 - alpha) \
        + np.asarray(color[:3], dtype=np.float64) * alpha
    out[..., :3] = rgb.astype(np.uint8)
    out[..., 3] = 255
    return out


def blend_rect(buf: np.ndarray, x0: int, y0: int, x1: int, y1: int, color: Color) -> None:
    region = _clip(x0, y0, x1, y1, buf.shape[1], buf.shape[0])
    if region is None:
        return
    rows, cols = region
    buf[rows, cols] = blend_colors(buf[rows, cols], color)


def fill_rect(buf: np.ndarray, x0: int, y0: int, x1: int, y1: int, color: Color) -> None:
    region = _clip(x0, y0, x1, y1, buf.shape[1], buf.shape[0])
    if region is None:
        return
    rows, cols = region
    buf[rows, cols] = color


def draw_border(buf: np.ndarray, x0: int, y0: int, x1: int, y1: int, color: Color) -> None:
    """1-px outline of the half-open rect [x0, x1) × [y0, y1)."""
    fill_rect(buf, x0, y0, x1, y0 + 1, color)
    fill_rect(buf, x0, y1 - 1, x1, y1, color)
    fill_rect(buf, x0, y0, x0 + 1, y1, color)
    fill_rect(buf, x1 - 1, y0, x1, y1, color)


def encode_png(pixels: np.ndarray) -> bytes:
    buf = BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()


# ── Renderer ──────────────────────────────────────────────────────────

class CompositeRenderer:
    """Builds composite frames from a base raster and overlay state."""

    def compose(
        self,
        base: RasterImage,
        overlay: OverlayState,
        legend: Optional[RasterImage] = None,
    ) -> np.ndarray:
        """Return a new RGBA array; *base* is never modified."""
        buf = base.copy_pixels()
        height, width = buf.shape[:2]

        if overlay.show_overlay:
            self._draw_crosshair(buf, overlay.crosshair)
            blend_rect(buf, 0, 0, width, TOP_BAR_HEIGHT, TOP_BAR_COLOR)

        if legend is not None:
            self._draw_legend(buf, legend)
        else:
            self._draw_legend_placeholder(buf)

        if overlay.show_feature_info:
            self._draw_feature_info(buf)

        return buf

    def render(
        self,
        base: RasterImage,
        overlay: OverlayState,
        legend: Optional[RasterImage] = None,
        fallback: bytes = b"",
    ) -> bytes:
        """Compose and encode to PNG; return *fallback* if encoding fails."""
        pixels = self.compose(base, overlay, legend)
        try:
            return encode_png(pixels)
        except (OSError, ValueError) as exc:
            log.warning("Composite encode failed, showing raw image: %s", exc)
            return fallback

    # ── Layers ──

    @staticmethod
    def _draw_crosshair(buf: np.ndarray, crosshair: Tuple[float, float]) -> None:
        height, width = buf.shape[:2]
        cx = int(crosshair[0] * (width - 1))
        cy = int(crosshair[1] * (height - 1))

        buf[np.arange(height) != cy, cx] = LINE_COLOR
        buf[cy, np.arange(width) != cx] = LINE_COLOR
        fill_rect(buf, cx - 1, cy - 1, cx + 2, cy + 2, CENTER_COLOR)

    @staticmethod
    def _draw_legend(buf: np.ndarray, legend: RasterImage) -> None:
        height, width = buf.shape[:2]
        lw, lh = legend.width, legend.height
        dest_x = LEGEND_PADDING
        dest_y = height - lh - LEGEND_PADDING

        pad = LEGEND_BG_PADDING
        blend_rect(buf, dest_x - pad, dest_y - pad,
                   dest_x + lw + pad, dest_y + lh + pad, LEGEND_BG_COLOR)

        region = _clip(dest_x, dest_y, dest_x + lw, dest_y + lh, width, height)
        if region is None:
            return
        rows, cols = region
        src = legend.pixels[rows.start - dest_y:rows.stop - dest_y,
                            cols.start - dest_x:cols.stop - dest_x]
        mask = src[..., 3] > 0
        dst = buf[rows, cols]
        dst[mask, :3] = src[mask, :3]
        dst[mask, 3] = 255

    @staticmethod
    def _draw_legend_placeholder(buf: np.ndarray) -> None:
        height = buf.shape[0]
        box_w, box_h = PLACEHOLDER_SIZE
        x0 = LEGEND_PADDING
        y0 = height - box_h - LEGEND_PADDING
        fill_rect(buf, x0, y0, x0 + box_w, y0 + box_h, PLACEHOLDER_COLOR)
        draw_border(buf, x0, y0, x0 + box_w, y0 + box_h, PLACEHOLDER_BORDER)

    @staticmethod
    def _draw_feature_info(buf: np.ndarray) -> None:
        height, width = buf.shape[:2]
        box_w, box_h = INFO_BOX_SIZE
        x0 = width - box_w - INFO_PADDING
        y0 = height - box_h - INFO_PADDING
        x1, y1 = x0 + box_w, y0 + box_h

        blend_rect(buf, x0, y0, x1, y1, INFO_BG_COLOR)
        draw_border(buf, x0, y0, x1, y1, INFO_BORDER_COLOR)

        # "i" glyph: 2-px dot, gap, 2-px stem
        ix, iy = x0 + 10, y0 + 10
        fill_rect(buf, ix, iy, ix + 2, iy + 1, INFO_ICON_COLOR)
        fill_rect(buf, ix, iy + 3, ix + 2, iy + 12, INFO_ICON_COLOR)
