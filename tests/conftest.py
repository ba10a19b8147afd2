from __future__ import annotations

import io
import os
import subprocess
import urllib.error
import urllib.request
from typing import Callable, Dict, List, Optional

import pytest


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)


def read_concat_manifest(path: str) -> List[str]:
    clips: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line.startswith("file "):
                continue
            value = line[len("file ") :]
            if value.startswith("'") and value.endswith("'"):
                value = value[1:-1].replace("'\\''", "'")
            clips.append(value)
    return clips


class FakeTools:
    """Stand-in for pdftoppm and ffmpeg that writes traceable outputs.

    normalize -> N[<input>], composite -> C[<image>+<clip>], concat joins the
    listed files with "|" in manifest order.
    """

    read_manifest = staticmethod(read_concat_manifest)

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.fail: Optional[Callable[[List[str]], bool]] = None
        self.stderr = "boom"

    def __call__(self, cmd, capture_output=False, text=False, timeout=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        if self.fail is not None and self.fail(cmd):
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr=self.stderr)
        if os.path.basename(cmd[0]) == "pdftoppm":
            ext = ".png" if "-png" in cmd else ".jpg"
            page = cmd[cmd.index("-f") + 1]
            _write(cmd[-1] + ext, f"page{page}".encode("utf-8"))
        elif "concat" in cmd:
            manifest = cmd[cmd.index("-i") + 1]
            _write(cmd[-1], b"|".join(_read(clip) for clip in read_concat_manifest(manifest)))
        elif "-filter_complex" in cmd:
            inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
            _write(cmd[-1], b"C[" + _read(inputs[0]) + b"+" + _read(inputs[1]) + b"]")
        else:
            _write(cmd[-1], b"N[" + _read(cmd[cmd.index("-i") + 1]) + b"]")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    def tools(self) -> List[str]:
        return [os.path.basename(cmd[0]) for cmd in self.calls]


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def fake_tools(monkeypatch) -> FakeTools:
    tools = FakeTools()
    monkeypatch.setattr("subprocess.run", tools)
    monkeypatch.setenv("FFMPEG_BIN", "ffmpeg")
    monkeypatch.setenv("PDFTOPPM_BIN", "pdftoppm")
    return tools


@pytest.fixture
def fake_downloads(monkeypatch) -> Dict[str, bytes]:
    """URL -> body served by a patched urlopen; unknown URLs fail like a DNS error."""
    bodies: Dict[str, bytes] = {}

    def fake_urlopen(req, timeout=None):
        url = req.full_url if isinstance(req, urllib.request.Request) else str(req)
        if url not in bodies:
            raise urllib.error.URLError("name or service not known")
        return FakeResponse(bodies[url])

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return bodies
