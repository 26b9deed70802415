"""
Terminal image output: capability detection and renderer fallback chain.

Tiers, best first:

  Kitty   native graphics protocol (TERM / KITTY_WINDOW_ID), emitted by
          ``chafa --format kitty`` through a temp file; retries with
          ``--format symbols`` before giving up.
  Sixel   ``img2sixel -`` with the PNG piped to stdin.
  Chafa   ``chafa --size WxH --colors 256`` on a temp file.
  ASCII   built-in brightness ramp, always available.

Capabilities are probed once.  At render time the adapter walks the
chain from the first available tier; any tier that fails (binary gone,
non-zero exit, timeout, undecodable image) hands over to the next one.
Converter calls are bounded by a timeout so a hung process cannot freeze
the UI.

Usage
-----
    adapter = ProtocolAdapter()              # detects once
    text, ok = adapter.render(png_bytes, 100, 40)
    adapter.protocol_name                    # "Kitty", "Sixel", ...
"""
from __future__ import annotations

import enum
import logging
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .decoder import DecodeError, decode_image

log = logging.getLogger(__name__)

ASCII_RAMP = " .:-=+*#%@"
ALPHA_THRESHOLD = 128
DECODE_ERROR_TEXT = "[Image decode error]"
_DEFAULT_TIMEOUT = 10.0  # seconds per converter call

SIXEL_BINARY = "img2sixel"
CHAFA_BINARY = "chafa"


class Protocol(enum.Enum):
    KITTY = "Kitty"
    SIXEL = "Sixel"
    CHAFA = "Chafa"
    ASCII = "ASCII"

    @classmethod
    def parse(cls, value: str) -> "Protocol":
        for member in cls:
            if value.strip().lower() in (member.name.lower(), member.value.lower()):
                return member
        raise ValueError(f"unknown protocol {value!r}")


class RendererError(Exception):
    """A renderer could not produce output."""


# ── Capability detection ──────────────────────────────────────────────

def is_kitty_terminal(env: Mapping[str, str]) -> bool:
    return "kitty" in env.get("TERM", "") or bool(env.get("KITTY_WINDOW_ID"))


@dataclass(frozen=True)
class Capabilities:
    """Which tiers above ASCII are usable in this terminal."""
    kitty: bool = False
    sixel: bool = False
    chafa: bool = False

    @classmethod
    def detect(
        cls,
        env: Optional[Mapping[str, str]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> "Capabilities":
        env = os.environ if env is None else env
        caps = cls(
            kitty=is_kitty_terminal(env),
            sixel=which(SIXEL_BINARY) is not None,
            chafa=which(CHAFA_BINARY) is not None,
        )
        log.info("Terminal graphics: kitty=%s sixel=%s chafa=%s",
                 caps.kitty, caps.sixel, caps.chafa)
        return caps

    @classmethod
    def only(cls, protocol: Protocol) -> "Capabilities":
        """Capabilities forcing *protocol* (ASCII stays as the last resort)."""
        return cls(
            kitty=protocol is Protocol.KITTY,
            sixel=protocol is Protocol.SIXEL,
            chafa=protocol is Protocol.CHAFA,
        )


# ── Renderers ─────────────────────────────────────────────────────────

def _fit(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


class Renderer(ABC):
    """One output tier.  ``render`` returns ``(text, ok)`` and never raises."""

    protocol: Protocol = Protocol.ASCII
    # (min, max) character cells for the drawn area
    width_limits: Tuple[int, int] = (40, 120)
    height_limits: Tuple[int, int] = (15, 50)

    def __init__(self, timeout: float = _DEFAULT_TIMEOUT):
        self.timeout = timeout

    def fit_size(self, width: int, height: int) -> Tuple[int, int]:
        return (_fit(width, *self.width_limits), _fit(height, *self.height_limits))

    def render(self, data: bytes, width: int, height: int) -> Tuple[str, bool]:
        if not data:
            return "", False
        cols, rows = self.fit_size(width, height)
        try:
            return self._render(data, cols, rows), True
        except (RendererError, DecodeError, OSError, subprocess.SubprocessError) as exc:
            log.info("%s renderer failed: %s", self.protocol.value, exc)
            return "", False

    @abstractmethod
    def _render(self, data: bytes, cols: int, rows: int) -> str:
        """Produce terminal output or raise."""

    def _run(self, cmd: Sequence[str], stdin: Optional[bytes] = None) -> str:
        log.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                list(cmd),
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RendererError(f"{cmd[0]} timed out after {self.timeout:.0f}s") from exc
        if proc.returncode != 0:
            err = proc.stderr.decode("utf-8", errors="replace").strip()
            raise RendererError(f"{cmd[0]} exited {proc.returncode}: {err[:200]}")
        return proc.stdout.decode("utf-8", errors="replace")


class _TempFileRenderer(Renderer):
    """Writes the PNG to a temp file for converters that want a path."""

    def _render(self, data: bytes, cols: int, rows: int) -> str:
        fd, name = tempfile.mkstemp(prefix="mapterm-preview-", suffix=".png")
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            return self._render_file(path, cols, rows)
        finally:
            path.unlink(missing_ok=True)

    @abstractmethod
    def _render_file(self, path: Path, cols: int, rows: int) -> str:
        ...


class NativeRenderer(_TempFileRenderer):
    """Kitty graphics protocol via chafa, symbols mode as a retry."""

    protocol = Protocol.KITTY

    def _render_file(self, path: Path, cols: int, rows: int) -> str:
        size = f"{cols}x{rows}"
        try:
            return self._run([
                CHAFA_BINARY, "--format", "kitty", "--size", size,
                "--colors", "full", "--color-space", "rgb", "--clear", str(path),
            ])
        except (RendererError, OSError) as exc:
            log.info("chafa kitty output failed (%s), retrying with symbols", exc)
        return self._run([
            CHAFA_BINARY, "--format", "symbols", "--size", size,
            "--colors", "full", str(path),
        ])


class SixelRenderer(Renderer):
    """Pipes the image into ``img2sixel`` and returns its output."""

    protocol = Protocol.SIXEL

    def _render(self, data: bytes, cols: int, rows: int) -> str:
        return self._run([SIXEL_BINARY, "-"], stdin=data)


class ChafaRenderer(_TempFileRenderer):
    """General terminal-image converter with explicit size/colour depth."""

    protocol = Protocol.CHAFA

    def _render_file(self, path: Path, cols: int, rows: int) -> str:
        return self._run([
            CHAFA_BINARY, "--size", f"{cols}x{rows}", "--colors", "256", str(path),
        ])


class AsciiRenderer(Renderer):
    """Nearest-pixel brightness ramp; needs nothing but Pillow/numpy."""

    protocol = Protocol.ASCII
    width_limits = (40, 100)
    height_limits = (15, 40)

    def _render(self, data: bytes, cols: int, rows: int) -> str:
        raster = decode_image(data)
        return ascii_art(raster.pixels, cols, rows)


def ascii_art(pixels: np.ndarray, cols: int, rows: int, ramp: str = ASCII_RAMP) -> str:
    """Sample one source pixel per cell and map its brightness onto *ramp*."""
    height, width = pixels.shape[:2]
    ys = np.minimum((np.arange(rows) * (height / rows)).astype(int), height - 1)
    xs = np.minimum((np.arange(cols) * (width / cols)).astype(int), width - 1)
    cells = pixels[ys][:, xs].astype(np.int64)

    gray = cells[..., :3].sum(axis=-1) // 3
    idx = gray * (len(ramp) - 1) // 255
    chars = np.asarray(list(ramp))[idx]
    chars[cells[..., 3] < ALPHA_THRESHOLD] = " "
    return "".join("".join(row) + "\n" for row in chars)


def renderer_chain(
    caps: Capabilities, timeout: float = _DEFAULT_TIMEOUT,
) -> List[Renderer]:
    """Tiers in fixed order, skipping those whose capability is missing."""
    chain: List[Renderer] = []
    if caps.kitty:
        chain.append(NativeRenderer(timeout))
    if caps.sixel:
        chain.append(SixelRenderer(timeout))
    if caps.chafa:
        chain.append(ChafaRenderer(timeout))
    chain.append(AsciiRenderer(timeout))
    return chain


# ── Adapter ───────────────────────────────────────────────────────────

class ProtocolAdapter:
    """Renders composite PNG bytes with the best tier that works."""

    def __init__(
        self,
        capabilities: Optional[Capabilities] = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ):
        self.capabilities = capabilities or Capabilities.detect()
        self.chain = renderer_chain(self.capabilities, timeout)

    @property
    def protocol(self) -> Protocol:
        return self.chain[0].protocol

    @property
    def protocol_name(self) -> str:
        return self.protocol.value

    def render(self, data: bytes, width: int, height: int) -> Tuple[str, bool]:
        """Walk the chain; ``ok`` is False only if every tier failed."""
        if not data:
            return "", False
        for renderer in self.chain:
            text, ok = renderer.render(data, width, height)
            if ok:
                return text, True
        log.warning("All renderers failed for %d-byte image", len(data))
        return DECODE_ERROR_TEXT, False
