"""
Preview configuration.

Resolution order (later wins):
  1. dataclass defaults
  2. JSON file given with ``--config`` (read only, never written back)
  3. environment: MAPTERM_URL, MAPTERM_USER, MAPTERM_PASSWORD,
     MAPTERM_PROTOCOL
  4. command-line flags

Example JSON
------------
    {
      "url": "http://localhost:8080/geoserver",
      "username": "admin",
      "password": "geoserver",
      "timeout_s": 30
    }
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

log = logging.getLogger(__name__)

_ENV_KEYS = {
    "MAPTERM_URL": "url",
    "MAPTERM_USER": "username",
    "MAPTERM_PASSWORD": "password",
    "MAPTERM_PROTOCOL": "protocol",
}


@dataclass
class PreviewConfig:
    url: str = "http://localhost:8080/geoserver"
    username: str = ""
    password: str = ""
    timeout_s: float = 30.0
    image_format: str = "image/png"
    srs: str = "EPSG:4326"
    wms_version: str = "1.1.1"
    legend_size: int = 20
    render_timeout_s: float = 10.0
    max_workers: int = 4
    protocol: str = ""          # force a renderer tier; "" = auto-detect
    log_dir: str = "logs"

    def update(self, values: Mapping[str, Any]) -> None:
        """Apply known keys from *values*, coercing to the field's type."""
        known = {f.name: f for f in fields(self)}
        for key, value in values.items():
            if value is None:
                continue
            if key not in known:
                log.warning("Ignoring unknown config key %r", key)
                continue
            current = getattr(self, key)
            try:
                setattr(self, key, type(current)(value))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"invalid value for {key}: {value!r}") from exc


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PreviewConfig:
    """Build a :class:`PreviewConfig` from file, environment and overrides."""
    cfg = PreviewConfig()

    if path is not None:
        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object")
        cfg.update(data)
        log.info("Loaded config from %s", path)

    env = os.environ if env is None else env
    cfg.update({attr: env[key] for key, attr in _ENV_KEYS.items() if env.get(key)})

    if overrides:
        cfg.update(overrides)
    return cfg
