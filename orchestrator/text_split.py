"""Split extracted document text into per-page narration segments."""
import re
from typing import List

PAGE_BREAK = "\f"

_PARAGRAPH_RE = re.compile(r"\n{2,}")


def split_text_by_page(full_text: str, page_count: int) -> List[str]:
    """Best-effort mapping of document text onto pages.

    Explicit page-break markers win when they yield exactly ``page_count``
    segments. Otherwise paragraphs are spread evenly across pages, and when
    there are fewer paragraphs than pages the whole text is one segment.
    """
    text = full_text or ""
    if page_count <= 1:
        return [text.strip()]

    pages = text.split(PAGE_BREAK)
    if len(pages) == page_count:
        return [page.strip() for page in pages]

    paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(text.replace(PAGE_BREAK, "\n\n"))]
    paragraphs = [p for p in paragraphs if p]
    if len(paragraphs) >= page_count:
        return [
            "\n\n".join(chunk)
            for chunk in _distribute(paragraphs, page_count)
        ]

    return [text.replace(PAGE_BREAK, "\n\n").strip()]


def _distribute(items: List[str], buckets: int) -> List[List[str]]:
    # Sizes differ by at most one, larger buckets first.
    base, extra = divmod(len(items), buckets)
    out: List[List[str]] = []
    cursor = 0
    for idx in range(buckets):
        size = base + (1 if idx < extra else 0)
        out.append(items[cursor : cursor + size])
        cursor += size
    return out
