"""
PDF page rasterization (pdftoppm) and text extraction (pypdf).
"""
import io
import os
import re
import shutil
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from mcp_servers.media.server import run_tool
from orchestrator.errors import (
    EmptyDocument,
    RasterizeFailed,
    ScannedDocumentNoText,
    UnsupportedDocument,
)
from orchestrator.settings import load_config
from orchestrator.text_split import PAGE_BREAK

_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7E\n\t\f]")
_SPACES_RE = re.compile(r" {2,}")
_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass
class PageConfig:
    dpi: int = 150
    scale_to: int = 1920
    image_format: str = "jpeg"
    page_timeout_sec: float = 120.0
    max_text_chars: int = 0


class PageService:
    def __init__(self, config: Optional[PageConfig] = None) -> None:
        self.config = config or load_config(PageConfig, "pages")
        self.pdftoppm_bin = os.getenv("PDFTOPPM_BIN", "pdftoppm")

    def rasterize(self, document_bytes: bytes, output_dir: str) -> Tuple[int, List[str]]:
        """Render every page to ``page-<n>.<ext>`` in ``output_dir``, numbered from 1.

        The directory is cleared first. The staging copy of the document is
        removed before returning, whether rendering succeeded or not.
        """
        _reset_dir(output_dir)
        staging_path = os.path.join(output_dir, "input.pdf")
        ext = "png" if self.config.image_format == "png" else "jpg"
        try:
            with open(staging_path, "wb") as f:
                f.write(document_bytes)
            page_count = len(_open_reader(document_bytes).pages)
            if page_count == 0:
                raise EmptyDocument("document has no pages")
            paths: List[str] = []
            for page_number in range(1, page_count + 1):
                prefix = os.path.join(output_dir, f"page-{page_number}")
                cmd = [
                    self.pdftoppm_bin,
                    f"-{self.config.image_format}",
                    "-r",
                    str(self.config.dpi),
                    "-scale-to",
                    str(self.config.scale_to),
                    "-f",
                    str(page_number),
                    "-l",
                    str(page_number),
                    "-singlefile",
                    staging_path,
                    prefix,
                ]
                run_tool(
                    cmd,
                    timeout=self.config.page_timeout_sec,
                    error_cls=RasterizeFailed,
                    what=f"rasterize page {page_number}",
                    tag="pages",
                )
                image_path = f"{prefix}.{ext}"
                if not os.path.isfile(image_path):
                    raise RasterizeFailed(f"rasterizer produced no image for page {page_number}", cmd=cmd)
                paths.append(image_path)
            return len(paths), paths
        finally:
            if os.path.exists(staging_path):
                os.unlink(staging_path)

    def extract_text(self, document_bytes: bytes) -> Tuple[str, int]:
        """Return (cleaned text, page count); pages are separated by form feeds."""
        reader = _open_reader(document_bytes)
        page_count = len(reader.pages)
        if page_count == 0:
            raise EmptyDocument("document has no pages")
        page_texts: List[str] = []
        for page in reader.pages:
            try:
                page_texts.append(page.extract_text() or "")
            except (PyPdfError, ValueError, KeyError) as exc:
                raise UnsupportedDocument(f"could not read page text: {exc}") from exc
        text = clean_text(PAGE_BREAK.join(page_texts))
        if not text.replace(PAGE_BREAK, "").strip():
            raise ScannedDocumentNoText(
                "This PDF appears to be a scanned image. Please upload a text-based PDF."
            )
        if self.config.max_text_chars and len(text) > self.config.max_text_chars:
            text = text[: self.config.max_text_chars]
        return text, page_count


def clean_text(raw: str) -> str:
    text = _NON_PRINTABLE_RE.sub(" ", raw or "")
    text = _SPACES_RE.sub(" ", text)
    text = _NEWLINES_RE.sub("\n\n", text)
    return text.strip(" \t\n")


def _open_reader(document_bytes: bytes) -> PdfReader:
    if not document_bytes:
        raise UnsupportedDocument("document is empty")
    try:
        reader = PdfReader(io.BytesIO(document_bytes))
        if reader.is_encrypted and not reader.decrypt(""):
            raise UnsupportedDocument("document is encrypted")
        # Touch the page tree so structural damage surfaces here.
        len(reader.pages)
    except (PyPdfError, ValueError, KeyError, TypeError) as exc:
        raise UnsupportedDocument(f"could not parse document: {exc}") from exc
    return reader


def _reset_dir(path: str) -> None:
    if os.path.isdir(path):
        shutil.rmtree(path)
    os.makedirs(path, exist_ok=True)
