import os
import subprocess
from unittest import mock

import numpy as np
import pytest

from mapterm.render import protocols
from mapterm.render.protocols import (
    DECODE_ERROR_TEXT,
    AsciiRenderer,
    Capabilities,
    Protocol,
    ProtocolAdapter,
    ascii_art,
    is_kitty_terminal,
    renderer_chain,
)

from conftest import make_png

ALL = Capabilities(kitty=True, sixel=True, chafa=True)


def _completed(returncode=0, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


def test_kitty_detection_from_environment():
    assert is_kitty_terminal({"TERM": "xterm-kitty"})
    assert is_kitty_terminal({"TERM": "xterm-256color", "KITTY_WINDOW_ID": "3"})
    assert not is_kitty_terminal({"TERM": "xterm-256color"})


def test_detect_probes_binaries_on_path():
    found = {"img2sixel": None, "chafa": "/usr/bin/chafa"}
    caps = Capabilities.detect(env={"TERM": "xterm"}, which=found.get)
    assert caps == Capabilities(kitty=False, sixel=False, chafa=True)


def test_chain_order_is_fixed():
    assert [r.protocol for r in renderer_chain(ALL)] == [
        Protocol.KITTY, Protocol.SIXEL, Protocol.CHAFA, Protocol.ASCII,
    ]
    caps = Capabilities(kitty=True, sixel=False, chafa=True)
    assert [r.protocol for r in renderer_chain(caps)] == [
        Protocol.KITTY, Protocol.CHAFA, Protocol.ASCII,
    ]
    assert [r.protocol for r in renderer_chain(Capabilities())] == [Protocol.ASCII]


def test_forced_protocol():
    assert Protocol.parse("sixel") is Protocol.SIXEL
    assert Capabilities.only(Protocol.CHAFA) == Capabilities(chafa=True)
    adapter = ProtocolAdapter(Capabilities.only(Protocol.ASCII))
    assert adapter.protocol_name == "ASCII"
    with pytest.raises(ValueError):
        Protocol.parse("iterm")


def test_every_failing_tier_falls_through_to_ascii(monkeypatch):
    run = mock.Mock(return_value=_completed(1, stderr=b"unsupported"))
    monkeypatch.setattr(protocols.subprocess, "run", run)
    adapter = ProtocolAdapter(ALL, timeout=2)
    assert adapter.protocol_name == "Kitty"

    text, ok = adapter.render(make_png(80, 40, (255, 255, 255, 255)), 60, 20)
    assert ok
    assert set(text.replace("\n", "")) == {"@"}

    commands = [call.args[0] for call in run.call_args_list]
    assert commands[0][:3] == ["chafa", "--format", "kitty"]
    assert commands[1][:3] == ["chafa", "--format", "symbols"]
    assert commands[2] == ["img2sixel", "-"]
    assert commands[3][:2] == ["chafa", "--size"]
    assert "256" in commands[3]
    assert all(call.kwargs["timeout"] == 2 for call in run.call_args_list)


def test_kitty_retries_with_symbols(monkeypatch):
    run = mock.Mock(side_effect=[_completed(1), _completed(0, stdout=b"SYMBOLS")])
    monkeypatch.setattr(protocols.subprocess, "run", run)
    text, ok = ProtocolAdapter(Capabilities(kitty=True)).render(make_png(), 100, 30)
    assert (text, ok) == ("SYMBOLS", True)


def test_sixel_pipes_image_on_stdin(monkeypatch):
    data = make_png()
    run = mock.Mock(return_value=_completed(0, stdout=b"\x1bPq...\x1b\\"))
    monkeypatch.setattr(protocols.subprocess, "run", run)
    text, ok = ProtocolAdapter(Capabilities(sixel=True)).render(data, 100, 30)
    assert ok and text.startswith("\x1bPq")
    assert run.call_args.kwargs["input"] == data


def test_timeout_and_missing_binary_fall_through(monkeypatch):
    run = mock.Mock(side_effect=[
        subprocess.TimeoutExpired(["img2sixel"], 1),
        FileNotFoundError("chafa"),
    ])
    monkeypatch.setattr(protocols.subprocess, "run", run)
    adapter = ProtocolAdapter(Capabilities(sixel=True, chafa=True))
    text, ok = adapter.render(make_png(), 100, 30)
    assert ok and run.call_count == 2
    assert len(text.splitlines()) == 30


def test_chafa_temp_file_is_removed(monkeypatch):
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append(cmd[-1])
        return _completed(0, stdout=b"ok")

    monkeypatch.setattr(protocols.subprocess, "run", fake_run)
    ProtocolAdapter(Capabilities(chafa=True)).render(make_png(), 100, 30)
    path = seen[0]
    assert path.endswith(".png")
    assert not os.path.exists(path)


def test_ascii_grid_is_clamped():
    renderer = AsciiRenderer()
    text, ok = renderer.render(make_png(), 10, 5)
    lines = text.splitlines()
    assert ok
    assert len(lines) == 15 and all(len(line) == 40 for line in lines)
    assert renderer.fit_size(300, 300) == (100, 40)


def test_ascii_art_ramp_and_alpha():
    pixels = np.zeros((2, 3, 4), dtype=np.uint8)
    pixels[..., 3] = 255
    pixels[0, 0, :3] = 255          # white → '@'
    pixels[0, 1, :3] = 0            # black → ' '
    pixels[0, 2] = (255, 255, 255, 0)   # transparent → ' '
    pixels[1, :, :3] = 128          # mid grey → ramp[4]
    assert ascii_art(pixels, 3, 2) == "@  \n===\n"


def test_undecodable_bytes_with_ascii_only():
    text, ok = ProtocolAdapter(Capabilities()).render(b"garbage", 80, 24)
    assert (text, ok) == (DECODE_ERROR_TEXT, False)
