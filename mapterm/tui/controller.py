"""
Map preview controller: the state machine behind the terminal view.

Owns the viewport, crosshair, layer-group selection and the current
frame.  All state changes happen on the UI loop: key presses arrive via
:meth:`Controller.handle_key`, fetch completions via
:meth:`Controller.handle_event`.

States
──────
  mode:   VIEWING ⇄ LAYER_PANEL   (panel only for toggleable groups)
  status: IDLE | PENDING | ERROR  (orthogonal fetch status)

Fetch cycle
───────────
  pan/zoom/style/refresh
    → keep the displayed frame as ``previous_rendered``
    → status = PENDING, generation += 1, dispatch GetMap
  MapResult(generation)
    → stale generation?  drop it
    → error?             status = ERROR, frame unchanged
    → decode → composite → render, drop previous frame
    → first success:     dispatch GetLegendGraphic (once)
"""
from __future__ import annotations

import enum
import logging
from typing import Any, List, Optional, Tuple

from ..config import PreviewConfig
from ..geo.layer_group import (
    LayerGroupController,
    StyleSelection,
    ValidationError,
)
from ..geo.viewport import CrosshairState, ViewportState
from ..ingest.rest_client import LayerMetadata
from ..ingest.wms_client import (
    FeatureInfoRequest,
    FeatureInfoResult,
    FetchPipeline,
    LegendRequest,
    LegendResult,
    MapRequest,
    MapResult,
    MetadataResult,
    qualified_name,
    select_layers,
)
from ..render.composite import CompositeRenderer, LegendCache, OverlayState
from ..render.decoder import DecodeError, RasterImage, decode_image
from ..render.protocols import ProtocolAdapter

log = logging.getLogger(__name__)

CROSSHAIR_STEP_PX = 10
FEATURE_INFO_MAX_LINES = 10

# Image request size limits (pixels)
IMG_WIDTH_RANGE = (256, 1024)
IMG_HEIGHT_RANGE = (192, 768)


class Mode(enum.Enum):
    VIEWING = "viewing"
    LAYER_PANEL = "layer_panel"


class FetchStatus(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    ERROR = "error"


def _fit(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def truncate_lines(text: str, max_lines: int = FEATURE_INFO_MAX_LINES) -> str:
    lines = text.split("\n")
    if len(lines) > max_lines:
        lines = lines[:max_lines] + ["... (truncated)"]
    return "\n".join(lines)


class Controller:
    """Interactive map preview for one layer or layer group.

    Parameters
    ----------
    workspace, layer_name : str
        Resource being previewed.
    pipeline : FetchPipeline
        Asynchronous WMS access; results come back through ``handle_event``.
    adapter : ProtocolAdapter
        Terminal renderer chain.
    config : PreviewConfig, optional
        Request formats, SRS and legend size.
    """

    def __init__(
        self,
        workspace: str,
        layer_name: str,
        pipeline: FetchPipeline,
        adapter: ProtocolAdapter,
        config: Optional[PreviewConfig] = None,
        compositor: Optional[CompositeRenderer] = None,
    ):
        self.workspace = workspace
        self.layer_name = layer_name
        self.resource = qualified_name(workspace, layer_name)
        self.pipeline = pipeline
        self.adapter = adapter
        self.config = config or PreviewConfig()
        self.compositor = compositor or CompositeRenderer()

        # View state
        self.viewport = ViewportState()
        self.crosshair = CrosshairState()
        self.styles = StyleSelection()
        self.groups = LayerGroupController()
        self.is_layer_group = False

        self.mode = Mode.VIEWING
        self.status = FetchStatus.IDLE
        self.error = ""
        self.message = ""
        self.visible = True
        self.metadata_loaded = False
        self.panel_cursor = 0

        # Overlays
        self.show_overlay = True
        self.feature_info = ""
        self.show_feature_info = False
        self.legend = LegendCache()

        # Frames
        self.image_data = b""
        self.raster: Optional[RasterImage] = None
        self.composite = b""
        self.rendered = ""
        self.previous_rendered: Optional[str] = None
        self.live_request: Optional[MapRequest] = None

        # Request tracking
        self._generation = 0
        self._pending: Optional[MapRequest] = None
        self._feature_seq = 0

        # Terminal size (cells) and requested image size (pixels)
        self.cols = 120
        self.rows = 40
        self.img_width = 800
        self.img_height = 600

    # ── Sizing ──

    def set_size(self, cols: int, rows: int) -> None:
        """Adapt request and display sizes to the terminal."""
        if (cols, rows) == (self.cols, self.rows):
            return
        self.cols, self.rows = cols, rows
        self.img_width = _fit((cols - 20) * 8, *IMG_WIDTH_RANGE)
        self.img_height = _fit((rows - 10) * 16, *IMG_HEIGHT_RANGE)
        if self.composite:
            self._render_composite()

    @property
    def display_size(self) -> Tuple[int, int]:
        return self.cols - 4, self.rows - 8

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loading(self) -> bool:
        return self.status is FetchStatus.PENDING

    # ── Metadata ──

    def apply_metadata(self, meta: LayerMetadata) -> None:
        """Seed bounds/styles/group layout and issue the first fetch."""
        if meta.bounds is not None:
            self.viewport.set_bounds(*meta.bounds)
        if meta.styles:
            self.styles.set_styles(meta.styles)
        if meta.is_layer_group:
            self.is_layer_group = True
            self.groups = LayerGroupController.from_sublayers(
                meta.group_mode, meta.group_layers,
            )
            log.info("Layer group %s: mode=%s, %d sublayers",
                     self.resource, meta.group_mode.value, len(self.groups))
        self.metadata_loaded = True
        self.request_map()

    # ── Fetching ──

    def current_style(self) -> str:
        return self.styles.current

    def build_map_request(self) -> MapRequest:
        """Request for the current view; raises ValidationError."""
        layers, styles = select_layers(self.resource, self.current_style(), self.groups)
        return MapRequest(
            layers=layers,
            styles=styles,
            bbox=self.viewport.bbox,
            width=self.img_width,
            height=self.img_height,
            image_format=self.config.image_format,
            srs=self.config.srs,
            version=self.config.wms_version,
        )

    def request_map(self) -> Optional[int]:
        """Dispatch a GetMap for the current view.

        Returns the request generation, or None when the selection is
        invalid (nothing is sent in that case).
        """
        try:
            request = self.build_map_request()
        except ValidationError as exc:
            self.status = FetchStatus.ERROR
            self.error = str(exc)
            # drop anything still in flight for the old selection
            self._generation += 1
            self._pending = None
            log.info("Map fetch not sent: %s", exc)
            return None

        self.previous_rendered = self.rendered or None
        self.status = FetchStatus.PENDING
        self.error = ""
        self._generation += 1
        self._pending = request
        log.debug("GetMap #%d bbox=%s size=%dx%d", self._generation,
                  request.bbox, request.width, request.height)
        self.pipeline.request_map(self._generation, request)
        return self._generation

    def request_feature_info(self) -> None:
        if self.raster is None or self.live_request is None:
            return
        if self.groups.can_toggle:
            names = [layer.name for layer in self.groups.enabled_layers()]
            if not names:
                self.message = "Feature info: no layers enabled"
                return
            layers = ",".join(names)
        else:
            layers = self.resource

        live = self.live_request
        px, py = self.viewport.pixel_from_normalized(
            self.crosshair.x, self.crosshair.y, live.width, live.height,
        )
        self._feature_seq += 1
        self.message = "Querying features..."
        self.pipeline.request_feature_info(self._feature_seq, FeatureInfoRequest(
            layers=layers,
            bbox=live.bbox,
            width=live.width,
            height=live.height,
            x=px,
            y=py,
            srs=self.config.srs,
            version=self.config.wms_version,
        ))

    def _request_legend(self) -> None:
        self.legend.requested = True
        self.pipeline.request_legend(LegendRequest(
            layer=self.resource,
            style=self.current_style(),
            width=self.config.legend_size,
            height=self.config.legend_size,
            image_format=self.config.image_format,
            version=self.config.wms_version,
        ))

    # ── Completion events ──

    def handle_event(self, event: Any) -> None:
        if isinstance(event, MapResult):
            self._on_map_result(event)
        elif isinstance(event, FeatureInfoResult):
            self._on_feature_info(event)
        elif isinstance(event, LegendResult):
            self._on_legend(event)
        elif isinstance(event, MetadataResult):
            if event.error:
                log.warning("Metadata unavailable: %s", event.error)
            self.apply_metadata(event.metadata or LayerMetadata())
        else:
            log.debug("Ignoring unknown event %r", event)

    def _on_map_result(self, result: MapResult) -> None:
        if result.generation != self._generation:
            log.debug("Dropping stale GetMap #%d (latest #%d)",
                      result.generation, self._generation)
            return

        if result.error:
            self.status = FetchStatus.ERROR
            self.error = result.error
            self.previous_rendered = None
            return

        try:
            raster = decode_image(result.data)
        except DecodeError as exc:
            self.status = FetchStatus.ERROR
            self.error = str(exc)
            self.previous_rendered = None
            return

        self.status = FetchStatus.IDLE
        self.error = ""
        self.image_data = result.data
        self.raster = raster
        self.live_request = self._pending
        self._update_composite()
        self.previous_rendered = None

        if not self.legend.requested:
            self._request_legend()

    def _on_feature_info(self, result: FeatureInfoResult) -> None:
        if result.seq != self._feature_seq:
            return
        if result.error:
            self.message = f"Feature info failed: {result.error}"
            self.show_feature_info = False
            return
        self.message = ""
        self.feature_info = result.info
        self.show_feature_info = True
        self._update_composite()

    def _on_legend(self, result: LegendResult) -> None:
        if result.error:
            log.info("Legend unavailable: %s", result.error)
            self.legend.store(None)
            return
        try:
            self.legend.store(decode_image(result.data))
        except DecodeError as exc:
            log.info("Legend image unusable: %s", exc)
            self.legend.store(None)
            return
        self._update_composite()

    # ── Compositing ──

    def overlay_state(self) -> OverlayState:
        return OverlayState(
            crosshair=(self.crosshair.x, self.crosshair.y),
            show_overlay=self.show_overlay,
            show_feature_info=self.show_feature_info and bool(self.feature_info),
        )

    def _update_composite(self) -> None:
        if self.raster is None:
            return
        self.composite = self.compositor.render(
            self.raster, self.overlay_state(), self.legend.image,
            fallback=self.image_data,
        )
        self._render_composite()

    def _render_composite(self) -> None:
        self.rendered, ok = self.adapter.render(self.composite, *self.display_size)
        if not ok:
            log.warning("Terminal rendering failed for all protocols")
        if self.loading:
            self.previous_rendered = self.rendered or None

    # ── Input ──

    def handle_key(self, key: str) -> bool:
        """Process one key; returns False once the preview is closed."""
        if self.mode is Mode.LAYER_PANEL:
            self._handle_panel_key(key)
        else:
            self._handle_view_key(key)
        return self.visible

    def _camera_moved(self) -> None:
        self.crosshair.reset()
        self.show_feature_info = False
        self._feature_seq += 1      # in-flight queries refer to the old view
        self.request_map()

    def _handle_view_key(self, key: str) -> None:
        vp = self.viewport
        camera = {
            "+": vp.zoom_in, "=": vp.zoom_in,
            "-": vp.zoom_out, "_": vp.zoom_out,
            "up": vp.pan_up, "k": vp.pan_up,
            "down": vp.pan_down, "j": vp.pan_down,
            "left": vp.pan_left, "h": vp.pan_left,
            "right": vp.pan_right,
        }
        crosshair = {
            "s-up": (0, -1), "K": (0, -1),
            "s-down": (0, 1), "J": (0, 1),
            "s-left": (-1, 0), "H": (-1, 0),
            "s-right": (1, 0), "L": (1, 0),
        }

        if key in ("escape", "q"):
            self.close()
        elif key in camera:
            camera[key]()
            self._camera_moved()
        elif key in crosshair:
            dx, dy = crosshair[key]
            self.move_crosshair(dx * CROSSHAIR_STEP_PX, dy * CROSSHAIR_STEP_PX)
        elif key == "r":
            self.request_map()
        elif key == "s":
            self.styles.next()
            self.request_map()
        elif key == "S":
            self.styles.prev()
            self.request_map()
        elif key == "l":
            self.open_layer_panel()
        elif key == "i":
            self.request_feature_info()
        elif key == "o":
            self.show_overlay = not self.show_overlay
            self._update_composite()

    def _handle_panel_key(self, key: str) -> None:
        if key in ("escape", "q"):
            self.mode = Mode.VIEWING
        elif key in ("up", "k"):
            self.panel_cursor = max(0, self.panel_cursor - 1)
        elif key in ("down", "j"):
            self.panel_cursor = min(len(self.groups) - 1, self.panel_cursor + 1)
        elif key == " ":
            self.groups.toggle(self.panel_cursor)
        elif key in ("left", "h"):
            self.groups.cycle_style(self.panel_cursor, -1)
        elif key in ("right", "l"):
            self.groups.cycle_style(self.panel_cursor, 1)
        elif key in ("a", "enter", "c-m"):
            self.mode = Mode.VIEWING
            self.request_map()

    def open_layer_panel(self) -> bool:
        if not (self.is_layer_group and self.groups.can_toggle):
            return False
        self.mode = Mode.LAYER_PANEL
        self.panel_cursor = min(self.panel_cursor, len(self.groups) - 1)
        return True

    def move_crosshair(self, dx: int, dy: int) -> None:
        if self.raster is None:
            return
        self.crosshair.move_pixels(dx, dy, self.raster.width, self.raster.height)
        self.show_feature_info = False
        self._update_composite()

    def close(self) -> None:
        self.visible = False

    # ── Readouts for the view ──

    def crosshair_lonlat(self) -> Tuple[float, float]:
        return self.viewport.geo_from_normalized(self.crosshair.x, self.crosshair.y)

    def feature_info_text(self) -> str:
        return truncate_lines(self.feature_info)

    def visible_frame(self) -> Optional[str]:
        """Text to show in the image area, or None for a spinner."""
        if self.loading:
            return self.previous_rendered
        return self.rendered or None

    def panel_rows(self) -> List[Tuple[bool, bool, str, str]]:
        """(selected, enabled, name, style label) per sublayer."""
        return [
            (i == self.panel_cursor, layer.enabled, layer.name,
             layer.style_label if layer.available_styles else "")
            for i, layer in enumerate(self.groups.layers)
        ]
