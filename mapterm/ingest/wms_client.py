"""
WMS fetch pipeline: GetMap, GetFeatureInfo and GetLegendGraphic.

Requests are plain frozen dataclasses built on the UI loop from the
current view state.  :class:`FetchPipeline` runs them on a small worker
pool and posts one typed completion event per request onto a
``queue.Queue`` that the UI loop drains.  Workers never touch UI state.

Every failure (connection error, timeout, non-2xx) becomes an event with
``error`` set; nothing raises across the thread boundary.

Data flow
─────────
  UI loop builds MapRequest(bbox, size, layers, styles)
    → FetchPipeline.request_map(generation, request)
      → worker: WMSClient.get_map()  (requests, basic auth, 30 s timeout)
      → events.put(MapResult(generation, data | error))
  UI loop: events.get() → Controller.handle_event()

Usage
-----
    events = queue.Queue()
    client = WMSClient("http://localhost:8080/geoserver", session)
    pipeline = FetchPipeline(client, events)
    pipeline.request_map(1, MapRequest(layers="ws:roads", ...))
    result = events.get()
"""
from __future__ import annotations

import logging
import queue
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from . import FetchError, fetch_with_retry
from ..geo.layer_group import LayerGroupController
from ..geo.viewport import BBox

log = logging.getLogger(__name__)

WMS_VERSION = "1.1.1"
DEFAULT_SRS = "EPSG:4326"
DEFAULT_FORMAT = "image/png"
INFO_FORMAT = "text/plain"
LEGEND_SIZE = 20
NO_FEATURES_MESSAGE = "No features found at this location"


def qualified_name(workspace: str, name: str) -> str:
    """``workspace:name``, or just ``name`` for global resources."""
    return f"{workspace}:{name}" if workspace else name


def select_layers(
    resource: str,
    style: str,
    groups: Optional[LayerGroupController] = None,
) -> Tuple[str, str]:
    """Layer and style lists for a map request.

    Toggle-capable layer groups send their enabled sublayers (raising
    ``ValidationError`` when none are enabled); everything else sends the
    resource itself with the selected style.
    """
    if groups is not None and groups.can_toggle:
        return groups.effective_layer_list()
    return resource, style


def _format_bbox(bbox: BBox) -> str:
    return ",".join(f"{v:f}" for v in bbox)


# ── Requests ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MapRequest:
    """One GetMap call."""
    layers: str
    styles: str
    bbox: BBox
    width: int
    height: int
    image_format: str = DEFAULT_FORMAT
    srs: str = DEFAULT_SRS
    version: str = WMS_VERSION

    def params(self) -> Dict[str, str]:
        return {
            "SERVICE": "WMS",
            "VERSION": self.version,
            "REQUEST": "GetMap",
            "LAYERS": self.layers,
            "STYLES": self.styles,
            "FORMAT": self.image_format,
            "TRANSPARENT": "true",
            "SRS": self.srs,
            "WIDTH": str(self.width),
            "HEIGHT": str(self.height),
            "BBOX": _format_bbox(self.bbox),
        }


@dataclass(frozen=True)
class FeatureInfoRequest:
    """One GetFeatureInfo call at pixel (x, y) of the current map."""
    layers: str
    bbox: BBox
    width: int
    height: int
    x: int
    y: int
    info_format: str = INFO_FORMAT
    srs: str = DEFAULT_SRS
    version: str = WMS_VERSION

    def params(self) -> Dict[str, str]:
        return {
            "SERVICE": "WMS",
            "VERSION": self.version,
            "REQUEST": "GetFeatureInfo",
            "LAYERS": self.layers,
            "QUERY_LAYERS": self.layers,
            "INFO_FORMAT": self.info_format,
            "SRS": self.srs,
            "WIDTH": str(self.width),
            "HEIGHT": str(self.height),
            "BBOX": _format_bbox(self.bbox),
            "X": str(self.x),
            "Y": str(self.y),
        }


@dataclass(frozen=True)
class LegendRequest:
    """One GetLegendGraphic call; always a small fixed-size image."""
    layer: str
    style: str = ""
    width: int = LEGEND_SIZE
    height: int = LEGEND_SIZE
    image_format: str = DEFAULT_FORMAT
    version: str = WMS_VERSION

    def params(self) -> Dict[str, str]:
        params = {
            "SERVICE": "WMS",
            "VERSION": self.version,
            "REQUEST": "GetLegendGraphic",
            "LAYER": self.layer,
            "FORMAT": self.image_format,
            "WIDTH": str(self.width),
            "HEIGHT": str(self.height),
        }
        if self.style:
            params["STYLE"] = self.style
        return params


# ── Completion events ─────────────────────────────────────────────────

@dataclass(frozen=True)
class MapResult:
    generation: int
    data: bytes = b""
    error: Optional[str] = None


@dataclass(frozen=True)
class FeatureInfoResult:
    seq: int
    info: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class LegendResult:
    data: bytes = b""
    error: Optional[str] = None


@dataclass(frozen=True)
class MetadataResult:
    metadata: Any = None
    error: Optional[str] = None


# ── Synchronous client ────────────────────────────────────────────────

class WMSClient:
    """Blocking WMS calls against ``<base_url>/wms``."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self.timeout = timeout

    @property
    def wms_url(self) -> str:
        return f"{self.base_url}/wms"

    def _get(self, params: Dict[str, str], label: str = "WMS") -> requests.Response:
        log.debug("WMS %s %s", params.get("REQUEST"), params)
        return fetch_with_retry(
            self._session, self.wms_url,
            params=params, timeout=self.timeout, label=label,
        )

    def get_map(self, request: MapRequest) -> bytes:
        resp = self._get(request.params())
        return resp.content

    def get_feature_info(self, request: FeatureInfoRequest) -> str:
        """Plain-text feature description; empty bodies become a message."""
        resp = self._get(request.params())
        info = resp.text.strip()
        return info or NO_FEATURES_MESSAGE

    def get_legend(self, request: LegendRequest) -> bytes:
        try:
            resp = self._get(request.params(), label="Legend")
        except FetchError as exc:
            if exc.status is not None:
                raise FetchError(f"legend request failed: {exc.status}",
                                 status=exc.status, body=exc.body) from exc
            raise
        return resp.content


# ── Asynchronous pipeline ─────────────────────────────────────────────

class FetchPipeline:
    """Runs WMS calls on worker threads and reports back via *events*.

    Parameters
    ----------
    client : WMSClient
        Performs the actual HTTP calls.
    events : queue.Queue
        Receives one result event per request.
    max_workers : int
        Size of the worker pool (ignored when *executor* is given).
    executor : concurrent.futures.Executor, optional
        Custom executor, e.g. a synchronous one in tests.
    """

    def __init__(
        self,
        client: WMSClient,
        events: "queue.Queue[Any]",
        max_workers: int = 4,
        executor: Optional[Executor] = None,
    ):
        self.client = client
        self.events = events
        self._own_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="wms-fetch",
        )

    def _submit(
        self,
        kind: str,
        task: Callable[[], Any],
        on_error: Callable[[str], Any],
    ) -> Future:
        def _run() -> None:
            try:
                event = task()
            except FetchError as exc:
                log.warning("%s fetch failed: %s", kind, exc)
                event = on_error(str(exc))
            except Exception as exc:
                # the UI loop must always receive a completion event
                log.exception("%s task crashed", kind)
                event = on_error(str(exc))
            self.events.put(event)

        return self._executor.submit(_run)

    def request_map(self, generation: int, request: MapRequest) -> Future:
        return self._submit(
            "GetMap",
            lambda: MapResult(generation, data=self.client.get_map(request)),
            lambda err: MapResult(generation, error=err),
        )

    def request_feature_info(self, seq: int, request: FeatureInfoRequest) -> Future:
        return self._submit(
            "GetFeatureInfo",
            lambda: FeatureInfoResult(seq, info=self.client.get_feature_info(request)),
            lambda err: FeatureInfoResult(seq, error=err),
        )

    def request_legend(self, request: LegendRequest) -> Future:
        return self._submit(
            "GetLegendGraphic",
            lambda: LegendResult(data=self.client.get_legend(request)),
            lambda err: LegendResult(error=err),
        )

    def request_metadata(self, loader: Callable[[], Any]) -> Future:
        """Run a metadata *loader* and post its return value."""
        return self._submit(
            "Metadata",
            lambda: MetadataResult(metadata=loader()),
            lambda err: MetadataResult(error=err),
        )

    def shutdown(self) -> None:
        if self._own_executor:
            self._executor.shutdown(wait=False)
