"""
Viewport state for the map preview.

Holds the geographic camera (centre + fractional zoom level), derives the
WMS bounding box from it, and converts between normalized image
coordinates (0–1, origin top-left), pixel coordinates and lon/lat.

The bounding box is always derived from ``(center, zoom_level)`` once
navigation begins:

    scale  = 1 / 2**zoom_level
    width  = 360 * scale
    height = 180 * scale
    bbox   = center ± (width/2, height/2)

and then slid back inside ``[-180, 180] × [-90, 90]`` without shrinking.

Usage
-----
    from mapterm.geo.viewport import ViewportState
    vp = ViewportState()
    vp.zoom_in()
    vp.pan_left()
    lon, lat = vp.geo_from_normalized(0.5, 0.5)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Tuple

import pyproj

log = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]   # (minx, miny, maxx, maxy)

WORLD_BOUNDS: BBox = (-180.0, -90.0, 180.0, 90.0)
WORLD_WIDTH = 360.0
WORLD_HEIGHT = 180.0

MIN_ZOOM = 0.0
MAX_ZOOM = 20.0
ZOOM_STEP = 0.5          # half a level per key press
PAN_FRACTION = 0.125     # 12.5 % of the current extent per pan

WGS84 = pyproj.CRS("EPSG:4326")


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# ── Crosshair ─────────────────────────────────────────────────────────

@dataclass
class CrosshairState:
    """Normalized crosshair position within the last fetched image.

    ``x`` grows to the right, ``y`` grows downwards (image rows).
    Both are kept inside the unit square.
    """
    x: float = 0.5
    y: float = 0.5

    def __post_init__(self) -> None:
        self.clamp()

    def clamp(self) -> None:
        self.x = _clamp(self.x, 0.0, 1.0)
        self.y = _clamp(self.y, 0.0, 1.0)

    def move_pixels(self, dx: int, dy: int, width: int, height: int) -> None:
        """Move by a pixel delta measured on an image of ``width × height``."""
        if width <= 0 or height <= 0:
            return
        self.x += dx / float(width)
        self.y += dy / float(height)
        self.clamp()

    def reset(self) -> None:
        self.x = 0.5
        self.y = 0.5


# ── Viewport ──────────────────────────────────────────────────────────

@dataclass
class ViewportState:
    """Geographic camera of the preview.

    Parameters
    ----------
    center_lon, center_lat : float
        Centre of the view in degrees.
    zoom_level : float
        Fractional zoom level in ``[0, 20]``; level 0 shows the world.
    bbox : (minx, miny, maxx, maxy)
        Current extent.  Seeded from layer bounds by :meth:`set_bounds`,
        afterwards recomputed by every pan/zoom.
    """
    center_lon: float = 0.0
    center_lat: float = 0.0
    zoom_level: float = 2.0
    bbox: BBox = field(default=WORLD_BOUNDS)

    # ── Seeding ──

    def set_bounds(self, minx: float, miny: float, maxx: float, maxy: float) -> None:
        """Show the given extent and centre the camera on it."""
        self.bbox = (minx, miny, maxx, maxy)
        self.center_lon = (minx + maxx) / 2.0
        self.center_lat = (miny + maxy) / 2.0
        log.debug("Viewport seeded from bounds %s", self.bbox)

    # ── Zoom ──

    def zoom_in(self) -> None:
        self.zoom_level = _clamp(self.zoom_level + ZOOM_STEP, MIN_ZOOM, MAX_ZOOM)
        self.recompute_bbox()

    def zoom_out(self) -> None:
        self.zoom_level = _clamp(self.zoom_level - ZOOM_STEP, MIN_ZOOM, MAX_ZOOM)
        self.recompute_bbox()

    # ── Pan ──

    def pan_up(self) -> None:
        self.center_lat += self.extent[1] * PAN_FRACTION
        self.recompute_bbox()

    def pan_down(self) -> None:
        self.center_lat -= self.extent[1] * PAN_FRACTION
        self.recompute_bbox()

    def pan_left(self) -> None:
        self.center_lon -= self.extent[0] * PAN_FRACTION
        self.recompute_bbox()

    def pan_right(self) -> None:
        self.center_lon += self.extent[0] * PAN_FRACTION
        self.recompute_bbox()

    @property
    def extent(self) -> Tuple[float, float]:
        """(width, height) of the current bbox in degrees."""
        minx, miny, maxx, maxy = self.bbox
        return maxx - minx, maxy - miny

    @property
    def scale(self) -> float:
        return 1.0 / (2.0 ** self.zoom_level)

    def recompute_bbox(self) -> BBox:
        """Derive the bbox from centre + zoom and clamp it to the world.

        A window that hits a world edge is slid back inside, keeping its
        width/height.  The centre follows the clamped window so that a
        pan in the opposite direction responds immediately.
        """
        width = WORLD_WIDTH * self.scale
        height = WORLD_HEIGHT * self.scale

        minx = self.center_lon - width / 2.0
        maxx = self.center_lon + width / 2.0
        miny = self.center_lat - height / 2.0
        maxy = self.center_lat + height / 2.0

        if minx < WORLD_BOUNDS[0]:
            minx = WORLD_BOUNDS[0]
            maxx = minx + width
        if maxx > WORLD_BOUNDS[2]:
            maxx = WORLD_BOUNDS[2]
            minx = maxx - width
        if miny < WORLD_BOUNDS[1]:
            miny = WORLD_BOUNDS[1]
            maxy = miny + height
        if maxy > WORLD_BOUNDS[3]:
            maxy = WORLD_BOUNDS[3]
            miny = maxy - height

        self.bbox = (minx, miny, maxx, maxy)
        self.center_lon = (minx + maxx) / 2.0
        self.center_lat = (miny + maxy) / 2.0
        return self.bbox

    # ── Coordinate conversion ──

    def geo_from_normalized(self, x: float, y: float) -> Tuple[float, float]:
        """Normalized image position → (lon, lat).  Y is inverted."""
        minx, miny, maxx, maxy = self.bbox
        lon = minx + x * (maxx - minx)
        lat = maxy - y * (maxy - miny)
        return lon, lat

    @staticmethod
    def pixel_from_normalized(
        x: float, y: float, width: int, height: int,
    ) -> Tuple[int, int]:
        """Normalized position → integer pixel for GetFeatureInfo."""
        return int(x * width), int(y * height)

    @staticmethod
    def normalized_from_pixel(
        px: float, py: float, width: int, height: int,
    ) -> Tuple[float, float]:
        if width <= 0 or height <= 0:
            return 0.0, 0.0
        return px / float(width), py / float(height)


# ── Bounds reprojection ───────────────────────────────────────────────

def bounds_to_lonlat(bounds: BBox, crs: str) -> BBox:
    """Reproject a bounding box from *crs* into EPSG:4326 lon/lat.

    Server metadata sometimes only carries the native (projected) extent
    of a resource.  The result is clipped to the world bounds.
    """
    if not crs:
        return bounds
    src = pyproj.CRS(crs)
    if src == WGS84:
        minx, miny, maxx, maxy = bounds
    else:
        transformer = pyproj.Transformer.from_crs(src, WGS84, always_xy=True)
        minx, miny, maxx, maxy = transformer.transform_bounds(*bounds)
    return (
        _clamp(minx, WORLD_BOUNDS[0], WORLD_BOUNDS[2]),
        _clamp(miny, WORLD_BOUNDS[1], WORLD_BOUNDS[3]),
        _clamp(maxx, WORLD_BOUNDS[0], WORLD_BOUNDS[2]),
        _clamp(maxy, WORLD_BOUNDS[1], WORLD_BOUNDS[3]),
    )
