from __future__ import annotations

import io
import os
from typing import List

import pytest
from pypdf import PdfWriter

from mcp_servers.pages.server import PageConfig, PageService, clean_text
from orchestrator.errors import EmptyDocument, RasterizeFailed, ScannedDocumentNoText, UnsupportedDocument


def blank_pdf(pages: int) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def text_pdf(pages: List[str]) -> bytes:
    """Minimal Helvetica PDF with one line of text per page."""
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        (
            "<< /Type /Pages /Kids ["
            + " ".join(f"{4 + 2 * i} 0 R" for i in range(len(pages)))
            + f"] /Count {len(pages)} >>"
        ).encode("ascii"),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for i, text in enumerate(pages):
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {5 + 2 * i} 0 R >>"
            ).encode("ascii")
        )
        stream = f"BT /F1 12 Tf 72 712 Td ({text}) Tj ET".encode("ascii")
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{num} 0 obj\n".encode("ascii") + body + b"\nendobj\n"
    xref = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode("ascii")
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref}\n%%EOF\n".encode("ascii")
    return bytes(out)


def test_rasterize_renders_each_page(fake_tools, tmp_path):
    out_dir = tmp_path / "pages"
    count, paths = PageService(PageConfig()).rasterize(blank_pdf(3), str(out_dir))

    assert count == 3
    assert paths == [str(out_dir / f"page-{n}.jpg") for n in (1, 2, 3)]
    assert all(os.path.isfile(p) for p in paths)
    assert not (out_dir / "input.pdf").exists()
    first = fake_tools.calls[0]
    assert first[:6] == ["pdftoppm", "-jpeg", "-r", "150", "-scale-to", "1920"]
    assert first[first.index("-f") + 1] == "1" and first[first.index("-l") + 1] == "1"


def test_rasterize_clears_stale_output(fake_tools, tmp_path):
    out_dir = tmp_path / "pages"
    out_dir.mkdir()
    (out_dir / "page-9.jpg").write_bytes(b"old")
    PageService(PageConfig()).rasterize(blank_pdf(1), str(out_dir))
    assert sorted(os.listdir(out_dir)) == ["page-1.jpg"]


def test_rasterize_failure_removes_staging_copy(fake_tools, tmp_path):
    fake_tools.fail = lambda cmd: cmd[cmd.index("-f") + 1] == "2"
    out_dir = tmp_path / "pages"
    with pytest.raises(RasterizeFailed):
        PageService(PageConfig()).rasterize(blank_pdf(2), str(out_dir))
    assert not (out_dir / "input.pdf").exists()


def test_rasterize_rejects_bad_documents(fake_tools, tmp_path):
    service = PageService(PageConfig())
    with pytest.raises(UnsupportedDocument):
        service.rasterize(b"", str(tmp_path / "a"))
    with pytest.raises(UnsupportedDocument):
        service.rasterize(b"definitely not a pdf", str(tmp_path / "b"))
    with pytest.raises(EmptyDocument):
        service.rasterize(blank_pdf(0), str(tmp_path / "c"))
    assert fake_tools.calls == []
    assert not (tmp_path / "b" / "input.pdf").exists()


def test_extract_text_separates_pages_with_form_feeds():
    text, page_count = PageService(PageConfig()).extract_text(text_pdf(["Hello page one", "Second page here"]))
    assert page_count == 2
    assert [part.strip() for part in text.split("\f")] == ["Hello page one", "Second page here"]


def test_extract_text_truncates_when_configured():
    text, _ = PageService(PageConfig(max_text_chars=5)).extract_text(text_pdf(["Hello page one"]))
    assert text == "Hello"


def test_extract_text_scanned_document():
    with pytest.raises(ScannedDocumentNoText):
        PageService(PageConfig()).extract_text(blank_pdf(2))


def test_clean_text():
    assert clean_text("a\x00b   c\n\n\n\nd\t") == "a b c\n\nd"
    assert clean_text("one\ftwo") == "one\ftwo"
