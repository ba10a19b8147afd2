"""Narrator agent: turn document text into spoken talking-head scripts."""
import json
from typing import Any, Dict, List, Optional

from agents.common import LLMClient
from orchestrator.errors import ScriptGenerationFailed

TONES = ("professional", "casual", "educational")
WORDS_PER_MINUTE = 150
MAX_SOURCE_CHARS = 50000
# Rough share of the document each page script should cover.
PAGE_SCRIPT_WORDS = 90
INTRO_SCRIPT_WORDS = 60


PROMPT_SUMMARY = """
You are a professional video script writer. Convert the document below into a
natural, engaging spoken-word script for a talking-head video.

Rules:
- Write in first person, speaking directly to the viewer.
- Use a {tone} tone.
- Target about {max_length_seconds} seconds of speech (~{target_words} words at 150 words per minute).
- Open with a brief hook; do not start with "Hello" or "Welcome".
- Summarize the key points; do not cover every detail.
- End with a clear conclusion or call to action.
- No stage directions, speaker labels, timestamps, markdown or special characters.
- Short, punchy sentences; this is spoken aloud.

Return JSON object with exactly one key: script (string).

DOCUMENT CONTENT:
{source_text}
""".strip()


PROMPT_PAGES = """
You are narrating a document page by page for a talking-head video. Each page
is shown full screen while you speak over it.

Full document (for context):
{full_text}

Pages:
{pages_json}

Requirements:
- Write one intro script for page_index 0: a ~{intro_words} word overview of the
  whole document with a brief hook. Do not start with "Hello" or "Welcome".
- Write one script per page (page_index 1..{page_count}), ~{page_words} words
  each, explaining what is on that page as if the viewer is looking at it.
- First person, conversational, short sentences. No markdown, stage directions
  or speaker labels.

Return JSON object with exactly one key: scripts, an array of
{{page_index: int, script: string}} covering page_index 0..{page_count} exactly once.
""".strip()


def run_summary(
    source_text: str,
    tone: str = "professional",
    max_length_seconds: int = 120,
    llm: Optional[LLMClient] = None,
) -> Dict[str, Any]:
    """Pure function: document text -> {script, word_count, estimated_duration_seconds}."""
    if not (source_text or "").strip():
        raise ScriptGenerationFailed("source text is required")
    if tone not in TONES:
        raise ScriptGenerationFailed(f"unsupported tone: {tone}")
    llm = llm or LLMClient(agent_name="narrator")
    max_length_seconds = int(max_length_seconds or 120)
    prompt = PROMPT_SUMMARY.format(
        tone=tone,
        max_length_seconds=max_length_seconds,
        target_words=round(max_length_seconds / 60 * WORDS_PER_MINUTE),
        source_text=source_text[:MAX_SOURCE_CHARS],
    )
    data = llm.complete_json(prompt)
    script = _clean_script(data.get("script") if isinstance(data, dict) else None)
    if not script:
        raise ScriptGenerationFailed("script generator returned an empty script")
    word_count = len(script.split())
    return {
        "script": script,
        "word_count": word_count,
        "estimated_duration_seconds": estimate_duration_seconds(word_count),
    }


def run_pages(
    text_by_page: List[str],
    full_text: str,
    llm: Optional[LLMClient] = None,
) -> List[Dict[str, Any]]:
    """Pure function: per-page text -> [{page_index, script}] with the intro at index 0."""
    if not text_by_page:
        raise ScriptGenerationFailed("at least one page segment is required")
    if not (full_text or "").strip():
        raise ScriptGenerationFailed("full text is required")
    llm = llm or LLMClient(agent_name="page_narrator")
    page_count = len(text_by_page)
    pages = [{"page_index": idx, "text": text} for idx, text in enumerate(text_by_page, start=1)]
    prompt = PROMPT_PAGES.format(
        full_text=full_text[:MAX_SOURCE_CHARS],
        pages_json=json.dumps(pages, ensure_ascii=True, indent=2),
        page_count=page_count,
        intro_words=INTRO_SCRIPT_WORDS,
        page_words=PAGE_SCRIPT_WORDS,
    )
    data = llm.complete_json(prompt)
    items = data.get("scripts") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise ScriptGenerationFailed("script generator response is missing scripts[]")

    by_index: Dict[int, str] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            idx = int(item.get("page_index"))
        except (TypeError, ValueError):
            continue
        script = _clean_script(item.get("script"))
        if 0 <= idx <= page_count and script and idx not in by_index:
            by_index[idx] = script

    missing = [idx for idx in range(page_count + 1) if idx not in by_index]
    if missing:
        raise ScriptGenerationFailed(f"script generator skipped pages: {missing}")
    return [{"page_index": idx, "script": by_index[idx]} for idx in range(page_count + 1)]


def estimate_duration_seconds(word_count: int) -> int:
    return round(word_count / WORDS_PER_MINUTE * 60)


def _clean_script(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())
