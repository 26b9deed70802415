import numpy as np
import pytest

from mapterm.render import composite
from mapterm.render.composite import (
    CENTER_COLOR,
    LINE_COLOR,
    PLACEHOLDER_COLOR,
    CompositeRenderer,
    OverlayState,
    blend_colors,
)
from mapterm.render.decoder import RasterImage, decode_image

from conftest import make_png

BASE_COLOR = (0, 100, 0, 255)


@pytest.fixture
def base():
    return decode_image(make_png(400, 300, BASE_COLOR))


@pytest.fixture
def legend():
    pixels = np.zeros((20, 20, 4), dtype=np.uint8)
    pixels[5:15, 5:15] = (0, 0, 255, 128)
    return RasterImage(pixels)


def test_blend_is_linear_and_opaque():
    base = np.array([[[100, 100, 100, 10]]], dtype=np.uint8)
    out = blend_colors(base, (200, 0, 0, 51))   # a = 0.2
    assert np.abs(out[0, 0, :3].astype(int) - [120, 80, 80]).max() <= 1
    assert out[0, 0, 3] == 255


def test_compose_leaves_base_untouched(base):
    before = base.pixels.copy()
    CompositeRenderer().compose(base, OverlayState())
    assert np.array_equal(base.pixels, before)


def test_compose_is_deterministic(base, legend):
    renderer = CompositeRenderer()
    state = OverlayState(crosshair=(0.3, 0.7), show_feature_info=True)
    first = renderer.render(base, state, legend)
    second = CompositeRenderer().render(base, state, legend)
    assert first == second


def test_crosshair_lines_and_center_marker(base):
    out = CompositeRenderer().compose(base, OverlayState(crosshair=(0.5, 0.5)))
    cx, cy = int(0.5 * 399), int(0.5 * 299)
    assert tuple(out[cy, cx]) == CENTER_COLOR
    assert tuple(out[cy - 1, cx + 1]) == CENTER_COLOR
    assert tuple(out[100, cx]) == LINE_COLOR      # vertical line
    assert tuple(out[cy, 300]) == LINE_COLOR      # horizontal line
    # top bar is blended, not opaque black
    top = tuple(out[5, 300])
    assert top != BASE_COLOR and top[:3] != (0, 0, 0)


def test_overlay_off_removes_crosshair_but_keeps_other_boxes(base):
    renderer = CompositeRenderer()
    state = OverlayState(crosshair=(0.5, 0.5), show_overlay=False, show_feature_info=True)
    out = renderer.compose(base, state)
    cx, cy = int(0.5 * 399), int(0.5 * 299)
    assert tuple(out[cy, cx]) == BASE_COLOR
    assert tuple(out[100, cx]) == BASE_COLOR
    assert tuple(out[5, 300]) == BASE_COLOR       # no annotation bar
    # legend placeholder and feature-info box still drawn
    assert tuple(out[300 - 10 - 20, 10 + 30]) == PLACEHOLDER_COLOR
    info_center = out[300 - 10 - 40, 400 - 10 - 75]
    assert tuple(info_center) != BASE_COLOR


def test_legend_pixels_copied_bottom_left(base, legend):
    out = CompositeRenderer().compose(base, OverlayState(show_overlay=False), legend)
    dest_y = 300 - 20 - composite.LEGEND_PADDING
    dest_x = composite.LEGEND_PADDING
    assert tuple(out[dest_y + 10, dest_x + 10]) == (0, 0, 255, 255)
    # transparent legend pixels show the blended backdrop
    backdrop = tuple(out[dest_y + 1, dest_x + 1])
    assert backdrop != BASE_COLOR and backdrop[3] == 255


def test_oversized_overlays_are_clipped():
    tiny = decode_image(make_png(12, 8, BASE_COLOR))
    out = CompositeRenderer().compose(tiny, OverlayState(show_feature_info=True))
    assert out.shape == (8, 12, 4)


def test_encode_failure_falls_back_to_raw_bytes(base, monkeypatch):
    def broken(pixels):
        raise OSError("disk full")

    monkeypatch.setattr(composite, "encode_png", broken)
    assert CompositeRenderer().render(base, OverlayState(), fallback=b"raw") == b"raw"
