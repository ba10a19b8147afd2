from __future__ import annotations

import json

from orchestrator import cli
from orchestrator.errors import PipelineFailed, ScannedDocumentNoText


class FakePages:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def extract_text(self, document_bytes: bytes):
        if self.fail:
            raise ScannedDocumentNoText("This PDF appears to be a scanned image.")
        return "page one\fpage two", 2


class FakeOrchestrator:
    def __init__(self, fail: bool = False, scanned: bool = False) -> None:
        self.pages = FakePages(scanned)
        self.fail = fail
        self.calls = []

    def run_page_by_page_pipeline(self, document, full_text, page_count, progress=None, on_warning=None):
        self.calls.append(("pages", full_text, page_count))
        progress("generating_videos", 1, 3)
        if self.fail:
            raise PipelineFailed({"stage": "generating_videos", "reason": "RENDER_JOB_FAILED", "page_index": 2})
        return "/data/output/stitched-run-1.mp4"

    def run_summary_pipeline(self, full_text, tone=None, max_length_seconds=None, progress=None, on_warning=None):
        self.calls.append(("summary", tone, max_length_seconds))
        return "/data/output/summary-run-1.mp4"


def _doc(tmp_path):
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4")
    return str(path)


def test_page_by_page_command(monkeypatch, tmp_path, capsys):
    fake = FakeOrchestrator()
    monkeypatch.setattr(cli, "Orchestrator", lambda: fake)
    assert cli.main(["page-by-page", "--document", _doc(tmp_path)]) == 0
    out = capsys.readouterr().out
    assert "[pipeline] generating_videos 1/3" in out
    result = json.loads(out[out.index("{") :])
    assert result == {"mode": "page-by-page", "page_count": 2, "output_path": "/data/output/stitched-run-1.mp4"}
    assert fake.calls == [("pages", "page one\fpage two", 2)]


def test_summary_command(monkeypatch, tmp_path, capsys):
    fake = FakeOrchestrator()
    monkeypatch.setattr(cli, "Orchestrator", lambda: fake)
    assert cli.main(["summary", "--document", _doc(tmp_path), "--tone", "casual", "--max-length", "90"]) == 0
    assert fake.calls == [("summary", "casual", 90)]
    assert json.loads(capsys.readouterr().out)["mode"] == "summary"


def test_pipeline_failure_exit_code(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "Orchestrator", lambda: FakeOrchestrator(fail=True))
    assert cli.main(["page-by-page", "--document", _doc(tmp_path)]) == 1
    err = json.loads(capsys.readouterr().err)
    assert err["error"]["page_index"] == 2


def test_extraction_failure_exit_code(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "Orchestrator", lambda: FakeOrchestrator(scanned=True))
    assert cli.main(["summary", "--document", _doc(tmp_path)]) == 1
    err = json.loads(capsys.readouterr().err)
    assert err["error"]["reason"] == "SCANNED_DOCUMENT_NO_TEXT"
