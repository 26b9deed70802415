"""
mapterm: preview a map server layer or layer group in the terminal.

Two modes:
  1) interactive (default): full-screen preview with pan/zoom, styles,
     crosshair, feature info and the layer panel
  2) --once: fetch one frame, print it (or save the
     composite PNG with --output) and exit; status 1 on error

Usage
-----
    mapterm topp:states --url http://localhost:8080/geoserver --user admin
    mapterm tiger:tiger-ny --group --protocol chafa
    mapterm topp:states --once --output states.png
"""
from __future__ import annotations

import argparse
import logging
import queue
import select
import shutil
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.keys import Keys
from prompt_toolkit.output import Output, create_output

from ..config import load_config
from ..ingest import create_session
from ..ingest.rest_client import RestMetadataClient
from ..ingest.wms_client import FetchPipeline, WMSClient
from ..logger import setup_logging
from ..render.protocols import Capabilities, Protocol, ProtocolAdapter
from .controller import Controller, FetchStatus
from .view import render_screen

log = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.1


def split_resource(resource: str) -> Tuple[str, str]:
    """``"ws:name"`` → ``("ws", "name")``; bare names have no workspace."""
    workspace, _, name = resource.rpartition(":")
    return workspace, name


def drain_events(ctl: Controller, events: "queue.Queue[Any]") -> bool:
    """Hand every queued completion event to the controller."""
    handled = False
    while True:
        try:
            event = events.get_nowait()
        except queue.Empty:
            return handled
        ctl.handle_event(event)
        handled = True


def key_name(key: Any) -> str:
    return key.value if isinstance(key, Keys) else str(key)


# ── Non-interactive ───────────────────────────────────────────────────

def _frame_settled(ctl: Controller) -> bool:
    if not ctl.metadata_loaded or ctl.status is FetchStatus.PENDING:
        return False
    return ctl.status is FetchStatus.ERROR or ctl.legend.fetched


def run_once(
    ctl: Controller,
    events: "queue.Queue[Any]",
    output: Optional[Path] = None,
    timeout: float = 30.0,
) -> int:
    """Fetch metadata, one map and the legend, then emit the frame."""
    size = shutil.get_terminal_size()
    ctl.set_size(size.columns, size.lines)

    while not _frame_settled(ctl):
        try:
            event = events.get(timeout=timeout)
        except queue.Empty:
            log.error("Timed out waiting for the map server")
            return 1
        ctl.handle_event(event)

    if ctl.status is FetchStatus.ERROR:
        log.error("Preview failed: %s", ctl.error)
        return 1

    if output is not None:
        output.write_bytes(ctl.composite)
        log.info("Wrote %d-byte composite to %s", len(ctl.composite), output)
    else:
        sys.stdout.write(ctl.rendered)
        sys.stdout.flush()
    return 0


# ── Interactive ───────────────────────────────────────────────────────

def _draw(out: Output, ctl: Controller, tick: int) -> None:
    size = out.get_size()
    out.erase_screen()
    out.cursor_goto(0, 0)
    out.write_raw(render_screen(ctl, size.columns, size.rows, tick))
    out.flush()


def run_interactive(
    ctl: Controller,
    events: "queue.Queue[Any]",
    inp: Optional[Input] = None,
    out: Optional[Output] = None,
) -> int:
    """Event loop: keys and completion events in, redraw when dirty."""
    inp = inp or create_input()
    out = out or create_output()

    out.enter_alternate_screen()
    out.hide_cursor()
    out.flush()

    dirty = True
    tick = 0
    try:
        with inp.raw_mode():
            while ctl.visible:
                size = out.get_size()
                if (size.columns, size.rows) != (ctl.cols, ctl.rows):
                    ctl.set_size(size.columns, size.rows)
                    dirty = True

                if dirty:
                    _draw(out, ctl, tick)
                    dirty = False

                ready, _, _ = select.select([inp.fileno()], [], [], POLL_INTERVAL_S)
                if ready:
                    presses: List[Any] = inp.read_keys() + inp.flush_keys()
                    for press in presses:
                        key = key_name(press.key)
                        if key == Keys.ControlC.value:
                            ctl.close()
                            break
                        if not ctl.handle_key(key):
                            break
                    dirty = True

                if drain_events(ctl, events):
                    dirty = True

                # animate the spinner only while there is nothing else to show
                if ctl.visible_frame() is None and (ctl.loading or not ctl.metadata_loaded):
                    tick += 1
                    dirty = True
    finally:
        out.show_cursor()
        out.quit_alternate_screen()
        out.flush()
    return 0


# ── CLI ───────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mapterm",
        description="Terminal map preview for WMS layers and layer groups.",
    )
    parser.add_argument(
        "resource",
        help="Layer or layer group to preview, as 'workspace:name' or 'name'.",
    )
    parser.add_argument("--url", help="Map server base URL (…/geoserver).")
    parser.add_argument("--user", help="Basic-auth user name.")
    parser.add_argument("--password", help="Basic-auth password.")
    parser.add_argument(
        "--group",
        action="store_true",
        help="Treat the resource as a layer group (enables the layer panel).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON configuration file (read only).",
    )
    parser.add_argument(
        "--protocol",
        choices=[p.value.lower() for p in Protocol],
        help="Force a terminal graphics protocol instead of auto-detecting.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Render a single frame to stdout and exit.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="With --once: save the composite PNG here instead of printing.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for logs/mapterm.log.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.output is not None and not args.once:
        parser.error("--output requires --once")

    overrides = {
        "url": args.url,
        "username": args.user,
        "password": args.password,
        "protocol": args.protocol,
    }
    try:
        cfg = load_config(args.config, overrides=overrides)
        protocol = Protocol.parse(cfg.protocol) if cfg.protocol else None
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    logfile = setup_logging(getattr(logging, args.log_level), cfg.log_dir, console=args.once)
    log.info("mapterm starting: %s at %s (log: %s)", args.resource, cfg.url, logfile)
    caps = Capabilities.only(protocol) if protocol else Capabilities.detect()
    adapter = ProtocolAdapter(caps, timeout=cfg.render_timeout_s)

    workspace, name = split_resource(args.resource)
    session = create_session(cfg.username, cfg.password)
    events: "queue.Queue[Any]" = queue.Queue()
    pipeline = FetchPipeline(
        WMSClient(cfg.url, session, cfg.timeout_s), events, max_workers=cfg.max_workers,
    )
    rest = RestMetadataClient(cfg.url, session, cfg.timeout_s)
    ctl = Controller(workspace, name, pipeline, adapter, cfg)

    pipeline.request_metadata(lambda: rest.fetch_metadata(workspace, name, args.group))
    try:
        if args.once:
            return run_once(ctl, events, args.output, timeout=cfg.timeout_s + 5)
        return run_interactive(ctl, events)
    except KeyboardInterrupt:
        return 130
    finally:
        pipeline.shutdown()


if __name__ == "__main__":
    sys.exit(main())
