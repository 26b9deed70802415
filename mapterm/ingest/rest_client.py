"""
GeoServer REST metadata for the preview: bounds, styles, group layout.

The preview needs, per resource:
  - geographic bounds (lon/lat) to seed the viewport,
  - the style names it can cycle through,
  - for layer groups: the group mode and each sublayer's name,
    group-assigned style and available styles.

Lookups that fail degrade to "unknown" (world extent, default style)
instead of aborting the preview.

Usage
-----
    from mapterm.ingest.rest_client import RestMetadataClient
    rest = RestMetadataClient("http://localhost:8080/geoserver", session)
    meta = rest.fetch_metadata("topp", "states")
    meta.bounds, meta.styles
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from pyproj.exceptions import CRSError, ProjError

from . import FetchError, fetch_with_retry
from ..geo.layer_group import GroupMode, SublayerInfo
from ..geo.viewport import BBox, bounds_to_lonlat

log = logging.getLogger(__name__)

_JSON_HEADERS = {"Accept": "application/json"}


@dataclass
class LayerMetadata:
    """What the preview needs to know about one resource."""
    bounds: Optional[BBox] = None
    styles: List[str] = field(default_factory=list)
    is_layer_group: bool = False
    group_mode: GroupMode = GroupMode.SINGLE
    group_layers: List[SublayerInfo] = field(default_factory=list)


def _as_list(value: Any) -> list:
    """GeoServer returns a bare object where a list has one element."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def _name_of(item: Any) -> str:
    if isinstance(item, dict):
        return item.get("name", "") or ""
    return str(item or "")


def _crs_of(bounds: dict) -> str:
    crs = bounds.get("crs", "")
    if isinstance(crs, dict):
        crs = crs.get("$", "")
    return crs or ""


def _parse_bounds(bounds: Optional[dict], default_crs: str = "EPSG:4326") -> Optional[BBox]:
    if not bounds:
        return None
    try:
        raw = (
            float(bounds["minx"]), float(bounds["miny"]),
            float(bounds["maxx"]), float(bounds["maxy"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        log.debug("Unparseable bounds %r: %s", bounds, exc)
        return None
    crs = _crs_of(bounds) or default_crs
    try:
        return bounds_to_lonlat(raw, crs)
    except (CRSError, ProjError) as exc:
        log.warning("Cannot reproject bounds from %s: %s", crs, exc)
        return None


class RestMetadataClient:
    """Read-only access to ``<base_url>/rest`` for preview metadata."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self.timeout = timeout

    def _get_json(self, url: str) -> Dict[str, Any]:
        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}/rest{url}"
        resp = fetch_with_retry(
            self._session, url,
            headers=_JSON_HEADERS, timeout=self.timeout, retries=1, label="REST",
        )
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"invalid JSON from {url}: {exc}") from exc

    # ── Layers ──

    def _layer(self, workspace: str, name: str) -> Dict[str, Any]:
        qualified = f"{workspace}:{name}" if workspace else name
        return self._get_json(f"/layers/{qualified}").get("layer", {})

    def layer_styles(self, workspace: str, name: str) -> List[str]:
        """Default style first, then the additional styles."""
        return self._styles_from_layer(self._layer(workspace, name))

    @staticmethod
    def _styles_from_layer(layer: Dict[str, Any]) -> List[str]:
        styles: List[str] = []
        default = _name_of(layer.get("defaultStyle"))
        if default:
            styles.append(default)
        extra = (layer.get("styles") or {}).get("style")
        for item in _as_list(extra):
            style = _name_of(item)
            if style and style not in styles:
                styles.append(style)
        return styles

    def layer_bounds(self, layer: Dict[str, Any]) -> Optional[BBox]:
        """Lon/lat bounds of the layer's resource (feature type / coverage)."""
        href = (layer.get("resource") or {}).get("href")
        if not href:
            return None
        resource_doc = self._get_json(href)
        resource = (
            resource_doc.get("featureType")
            or resource_doc.get("coverage")
            or next(iter(resource_doc.values()), {})
        )
        bounds = _parse_bounds(resource.get("latLonBoundingBox"))
        if bounds is None:
            native = resource.get("nativeBoundingBox")
            bounds = _parse_bounds(native, default_crs=resource.get("srs", ""))
        return bounds

    # ── Layer groups ──

    def layer_group(self, workspace: str, name: str) -> LayerMetadata:
        path = (f"/workspaces/{workspace}/layergroups/{name}" if workspace
                else f"/layergroups/{name}")
        group = self._get_json(path).get("layerGroup", {})

        published = _as_list((group.get("publishables") or {}).get("published"))
        group_styles = _as_list((group.get("styles") or {}).get("style"))

        infos: List[SublayerInfo] = []
        for i, item in enumerate(published):
            if not isinstance(item, dict) or item.get("@type", "layer") != "layer":
                continue
            layer_name = item.get("name", "")
            info = SublayerInfo(
                name=layer_name,
                default_style=_name_of(group_styles[i]) if i < len(group_styles) else "",
            )
            ws, _, short = layer_name.rpartition(":")
            try:
                info.available_styles = self.layer_styles(ws or workspace, short)
            except FetchError as exc:
                log.info("No styles for sublayer %s: %s", layer_name, exc)
            if not info.default_style and info.available_styles:
                info.default_style = info.available_styles[0]
            infos.append(info)

        return LayerMetadata(
            bounds=_parse_bounds(group.get("bounds")),
            is_layer_group=True,
            group_mode=GroupMode.parse(group.get("mode")),
            group_layers=infos,
        )

    # ── Public API ──

    def fetch_metadata(
        self, workspace: str, name: str, is_layer_group: bool = False,
    ) -> LayerMetadata:
        """Collect preview metadata; never raises for server-side problems."""
        if is_layer_group:
            try:
                return self.layer_group(workspace, name)
            except FetchError as exc:
                log.warning("Layer group %s:%s metadata failed: %s", workspace, name, exc)
                return LayerMetadata(is_layer_group=True)

        meta = LayerMetadata()
        try:
            layer = self._layer(workspace, name)
        except FetchError as exc:
            log.warning("Layer %s:%s metadata failed: %s", workspace, name, exc)
            return meta
        meta.styles = self._styles_from_layer(layer)
        try:
            meta.bounds = self.layer_bounds(layer)
        except FetchError as exc:
            log.warning("Bounds for %s:%s unavailable: %s", workspace, name, exc)
        log.info("Metadata %s:%s: %d styles, bounds=%s",
                 workspace, name, len(meta.styles), meta.bounds)
        return meta
