"""Error kinds raised by the page-by-page pipeline and its collaborators."""
import json
from typing import Any, Dict, List, Optional


class PipelineError(RuntimeError):
    """Base class for every failure a pipeline stage can raise."""

    reason = "PIPELINE_ERROR"


class UnsupportedDocument(PipelineError):
    reason = "UNSUPPORTED_DOCUMENT"


class EmptyDocument(PipelineError):
    reason = "EMPTY_DOCUMENT"


class ScannedDocumentNoText(PipelineError):
    reason = "SCANNED_DOCUMENT_NO_TEXT"


class ScriptGenerationFailed(PipelineError):
    reason = "SCRIPT_GENERATION_FAILED"


class RenderJobFailed(PipelineError):
    reason = "RENDER_JOB_FAILED"

    def __init__(self, page_index: int, message: str, remote_job_id: str = "") -> None:
        self.page_index = page_index
        self.message = message or "unknown error"
        self.remote_job_id = remote_job_id
        super().__init__(f"render job for page {page_index} failed: {self.message}")


class RenderTimeout(PipelineError):
    """Polling overran its budget.

    Raised as a fatal error at the hard ceiling; delivered as an advisory
    (``fatal=False``) to warning callbacks once the soft threshold passes.
    """

    reason = "RENDER_TIMEOUT"

    def __init__(self, pending: Dict[int, Optional[str]], elapsed_sec: float, fatal: bool = True) -> None:
        self.pending = dict(pending)
        self.elapsed_sec = elapsed_sec
        self.fatal = fatal
        pages = ", ".join(str(idx) for idx in sorted(self.pending))
        super().__init__(f"render jobs still processing after {elapsed_sec:.0f}s (pages: {pages})")


class MediaToolError(PipelineError):
    """An external media tool exited non-zero, timed out or could not start."""

    reason = "MEDIA_TOOL_FAILED"

    def __init__(
        self,
        message: str,
        *,
        cmd: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
        timed_out: bool = False,
    ) -> None:
        self.cmd = list(cmd or [])
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        self.timed_out = timed_out
        super().__init__(message)


class EncodeFailed(MediaToolError):
    reason = "ENCODE_FAILED"


class CompositeFailed(MediaToolError):
    reason = "COMPOSITE_FAILED"


class ConcatFailed(MediaToolError):
    reason = "CONCAT_FAILED"


class RasterizeFailed(MediaToolError):
    reason = "RASTERIZE_FAILED"


class MissingPageImage(FileNotFoundError):
    """Background image for a page is gone; callers degrade to normalization."""

    reason = "MISSING_PAGE_IMAGE"

    def __init__(self, page_index: int) -> None:
        self.page_index = page_index
        super().__init__(f"page image for page {page_index} is missing")


class PipelineFailed(RuntimeError):
    """Terminal error surfaced to the caller of a pipeline run."""

    def __init__(self, payload: Dict[str, Any]) -> None:
        self.payload = payload
        super().__init__(json.dumps(payload, ensure_ascii=True))

    @property
    def stage(self) -> str:
        return str(self.payload.get("stage") or "")

    @property
    def reason(self) -> str:
        return str(self.payload.get("reason") or "")

    @property
    def page_index(self) -> Optional[int]:
        return self.payload.get("page_index")
