"""
Text layout of the preview screen.

    ┌ title ────────────────────────────────────────┐
    │ info bar   style | zoom | protocol            │
    │                                               │
    │ image area (frame, previous frame or spinner) │
    │ feature-info popup / layer panel              │
    │                                               │
    │ status line (error, loading or coordinates)   │
    │ help line                                     │
    └───────────────────────────────────────────────┘

Everything here is a pure function of the controller state, so the app
loop can redraw whenever something changed.
"""
from __future__ import annotations

from typing import List

from .controller import Controller, Mode

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

HELP_VIEWING = (
    "←↓↑→/hjk pan  +/- zoom  s/S style  H/J/K/L crosshair  "
    "i info  o overlay  l layers  r refresh  q close"
)
HELP_VIEWING_PLAIN = (
    "←↓↑→/hjk pan  +/- zoom  s/S style  H/J/K/L crosshair  "
    "i info  o overlay  r refresh  q close"
)
HELP_PANEL = "↑/↓ select  space toggle  ←/→ style  a apply  esc close"


def _clip(text: str, width: int) -> str:
    if width <= 0:
        return ""
    return text if len(text) <= width else text[:max(width - 1, 0)] + "…"


def title_line(ctl: Controller) -> str:
    kind = "Layer Group" if ctl.is_layer_group else "Layer"
    return f" Map Preview: {ctl.resource} ({kind}) "


def info_line(ctl: Controller) -> str:
    parts = []
    if ctl.groups.can_toggle:
        enabled = len(ctl.groups.enabled_layers())
        parts.append(f"Layers: {enabled}/{len(ctl.groups)}")
    else:
        parts.append(f"Style: {ctl.styles.label}")
    parts.append(f"Zoom: {ctl.viewport.zoom_level:.1f}")
    parts.append(f"Protocol: {ctl.adapter.protocol_name}")
    if not ctl.show_overlay:
        parts.append("Overlay: off")
    return " | ".join(parts)


def status_line(ctl: Controller) -> str:
    if ctl.error:
        return f"Error: {ctl.error}"
    if ctl.loading:
        return "Loading..."
    minx, miny, maxx, maxy = ctl.viewport.bbox
    lon, lat = ctl.crosshair_lonlat()
    text = (f"Bounds: {minx:.4f},{miny:.4f},{maxx:.4f},{maxy:.4f}"
            f"  Crosshair: {lon:.5f}, {lat:.5f}")
    if ctl.message:
        text += f"  {ctl.message}"
    return text


def help_line(ctl: Controller) -> str:
    if ctl.mode is Mode.LAYER_PANEL:
        return HELP_PANEL
    if ctl.is_layer_group and ctl.groups.can_toggle:
        return HELP_VIEWING
    return HELP_VIEWING_PLAIN


def image_lines(ctl: Controller, tick: int = 0) -> List[str]:
    frame = ctl.visible_frame()
    if frame is not None:
        return frame.rstrip("\n").split("\n")
    if ctl.loading or not ctl.metadata_loaded:
        return [f"{SPINNER_FRAMES[tick % len(SPINNER_FRAMES)]} Loading map..."]
    return ["(no image)"]


def feature_info_lines(ctl: Controller, width: int) -> List[str]:
    if not (ctl.show_feature_info and ctl.feature_info):
        return []
    lines = ["── Feature Info ──"]
    lines.extend(_clip(line, width) for line in ctl.feature_info_text().split("\n"))
    return lines


def layer_panel_lines(ctl: Controller, width: int) -> List[str]:
    lines = [f"── Layers ({ctl.groups.mode.value}) ──"]
    for selected, enabled, name, style in ctl.panel_rows():
        cursor = ">" if selected else " "
        box = "[✓]" if enabled else "[ ]"
        row = f"{cursor} {box} {name}"
        if style:
            row += f"  ◀ {style} ▶"
        lines.append(_clip(row, width))
    return lines


def render_screen(ctl: Controller, width: int, height: int, tick: int = 0) -> str:
    """Full screen as newline-joined text.

    The image area is passed through untouched; it may contain terminal
    graphics escape sequences that must not be clipped.
    """
    top = [_clip(title_line(ctl), width), _clip(info_line(ctl), width), ""]
    bottom = ["", _clip(status_line(ctl), width), _clip(help_line(ctl), width)]

    if ctl.mode is Mode.LAYER_PANEL:
        body = layer_panel_lines(ctl, width)
    else:
        body = image_lines(ctl, tick) + feature_info_lines(ctl, width)

    # pad so the status/help lines sit at the bottom for short bodies
    free = height - len(top) - len(bottom) - len(body)
    if free > 0:
        body = body + [""] * free
    return "\n".join(top + body + bottom)
