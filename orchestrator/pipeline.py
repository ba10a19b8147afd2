"""Document-to-video orchestrator: page-by-page and summary runs with guaranteed cleanup."""
import os
import shutil
import time
import urllib.error
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agents.common import LLMClient
from agents.narrator.agent import run_pages as narrator_pages
from agents.narrator.agent import run_summary as narrator_summary
from mcp_servers.media.server import MediaService
from mcp_servers.pages.server import PageService

from .avatar_client import AvatarVideoClient
from .errors import (
    PipelineError,
    PipelineFailed,
    RenderJobFailed,
    RenderTimeout,
    ScriptGenerationFailed,
)
from .poller import JobPoller, RenderJob, build_submissions
from .run_logger import RunLogger
from .settings import load_config
from .text_split import split_text_by_page

STAGE_CREATED = "created"
STAGE_RASTERIZING = "rasterizing_pages"
STAGE_SCRIPTS = "generating_scripts"
STAGE_VIDEOS = "generating_videos"
STAGE_STITCHING = "stitching"
STAGE_DONE = "done"
STAGE_ERROR = "error"

STAGE_ORDER = [
    STAGE_CREATED,
    STAGE_RASTERIZING,
    STAGE_SCRIPTS,
    STAGE_VIDEOS,
    STAGE_STITCHING,
    STAGE_DONE,
]
TERMINAL_STAGES = {STAGE_DONE, STAGE_ERROR}

ProgressCallback = Callable[[str, int, int], None]
WarningCallback = Callable[[RenderTimeout], None]


@dataclass
class PipelineConfig:
    data_root: str = "data"
    work_root: str = ""
    output_dir: str = ""
    log_root: str = ""
    default_tone: str = "professional"
    default_max_length_seconds: int = 120

    def path(self, name: str) -> str:
        """Resolve work_root, output_dir or log_root; unset ones live under data_root."""
        defaults = {"work_root": "work", "output_dir": "output", "log_root": "runs"}
        return getattr(self, name) or os.path.join(self.data_root, defaults[name])


@dataclass
class Page:
    index: int
    image_path: Optional[str] = None


@dataclass
class PipelineRun:
    run_id: str
    work_dir: str
    stage: str = STAGE_CREATED
    pages: List[Page] = field(default_factory=list)
    jobs: Dict[int, RenderJob] = field(default_factory=dict)
    output_path: Optional[str] = None
    error: Optional[PipelineFailed] = None


def _load_default_config() -> PipelineConfig:
    cfg = load_config(PipelineConfig, "pipeline")
    cfg.data_root = (os.getenv("DATA_ROOT") or cfg.data_root).strip()
    return cfg


class _Progress:
    """Stage bookkeeping plus progress emission for one run."""

    def __init__(self, run: PipelineRun, logger: RunLogger, callback: Optional[ProgressCallback]) -> None:
        self.run = run
        self.logger = logger
        self.callback = callback
        self.ready = 0
        self.total = 0

    def enter(self, stage: str) -> None:
        if stage != STAGE_ERROR:
            if self.run.stage in TERMINAL_STAGES or STAGE_ORDER.index(stage) <= STAGE_ORDER.index(self.run.stage):
                raise RuntimeError(f"illegal stage transition {self.run.stage} -> {stage}")
        self.run.stage = stage
        self.logger.stage(stage)
        self.emit()

    def update(self, ready: int, total: int) -> None:
        self.ready = ready
        self.total = total
        self.emit()

    def emit(self) -> None:
        if self.callback is not None:
            self.callback(self.run.stage, self.ready, self.total)


class Orchestrator:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        pages: Optional[PageService] = None,
        media: Optional[MediaService] = None,
        avatar: Optional[AvatarVideoClient] = None,
        poller: Optional[JobPoller] = None,
        llm: Optional[LLMClient] = None,
    ) -> None:
        self.config = config or _load_default_config()
        self.pages = pages or PageService()
        self.media = media or MediaService()
        self.avatar = avatar or AvatarVideoClient()
        self.poller = poller or JobPoller(self.avatar)
        self.llm = llm

    def run_page_by_page_pipeline(
        self,
        document_bytes: bytes,
        full_text: str,
        page_count: int,
        progress: Optional[ProgressCallback] = None,
        on_warning: Optional[WarningCallback] = None,
    ) -> str:
        """Rasterize, narrate every page plus an intro, render, composite and stitch.

        Returns the path of the promoted final video. Any failure ends the run in
        the error stage and surfaces as a single ``PipelineFailed``.
        """
        run, logger = self._start_run("page_by_page")
        tracker = _Progress(run, logger, progress)
        try:
            tracker.enter(STAGE_RASTERIZING)
            count, paths = self.pages.rasterize(document_bytes, os.path.join(run.work_dir, "pages"))
            run.pages = [Page(index=idx, image_path=path) for idx, path in enumerate(paths, start=1)]
            logger.save_step("rasterize", {"page_count": count})

            tracker.enter(STAGE_SCRIPTS)
            text_by_page = split_text_by_page(full_text, page_count if page_count > 0 else count)
            scripts = self._page_scripts(text_by_page, full_text)
            logger.save_step(
                "scripts",
                {"segments": len(text_by_page), "scripts": {str(s["page_index"]): len(s["script"].split()) for s in scripts}},
            )

            tracker.total = len(scripts)
            tracker.enter(STAGE_VIDEOS)
            submissions = build_submissions([(s["page_index"], s["script"]) for s in scripts])
            self._render_all(run, submissions, logger, tracker, on_warning)

            tracker.enter(STAGE_STITCHING)
            page_images = {page.index: page.image_path for page in run.pages if page.image_path}
            assembled = self._stitch(run, page_images, logger, prefix="stitched")
            self._promote(run, assembled, logger)

            tracker.enter(STAGE_DONE)
            logger.finish("done", {"output_path": run.output_path})
            return run.output_path
        except Exception as exc:
            raise self._fail(run, logger, tracker, exc) from exc
        finally:
            self._cleanup(run, logger)

    def run_summary_pipeline(
        self,
        full_text: str,
        tone: Optional[str] = None,
        max_length_seconds: Optional[int] = None,
        progress: Optional[ProgressCallback] = None,
        on_warning: Optional[WarningCallback] = None,
    ) -> str:
        """One narrated summary clip, normalized to the canonical profile."""
        run, logger = self._start_run("summary")
        tracker = _Progress(run, logger, progress)
        try:
            tracker.enter(STAGE_SCRIPTS)
            result = self._summary_script(full_text, tone, max_length_seconds)
            logger.save_step(
                "scripts",
                {
                    "word_count": result["word_count"],
                    "estimated_duration_seconds": result["estimated_duration_seconds"],
                },
            )

            tracker.total = 1
            tracker.enter(STAGE_VIDEOS)
            self._render_all(run, [(0, result["script"], "Summary")], logger, tracker, on_warning)

            tracker.enter(STAGE_STITCHING)
            assembled = self._stitch(run, {}, logger, prefix="summary")
            self._promote(run, assembled, logger)

            tracker.enter(STAGE_DONE)
            logger.finish("done", {"output_path": run.output_path})
            return run.output_path
        except Exception as exc:
            raise self._fail(run, logger, tracker, exc) from exc
        finally:
            self._cleanup(run, logger)

    def _start_run(self, mode: str) -> Tuple[PipelineRun, RunLogger]:
        run_id = _make_run_id()
        work_dir = os.path.join(self.config.path("work_root"), run_id)
        os.makedirs(work_dir)
        run = PipelineRun(run_id=run_id, work_dir=work_dir)
        logger = RunLogger(os.path.join(self.config.path("log_root"), run_id))
        logger.save_step("run", {"mode": mode})
        logger.log(f"run started mode={mode}")
        return run, logger

    def _page_scripts(self, text_by_page: List[str], full_text: str) -> List[Dict[str, Any]]:
        try:
            return narrator_pages(text_by_page, full_text, llm=self.llm)
        except ScriptGenerationFailed:
            raise
        except (OSError, ValueError, RuntimeError) as exc:
            raise ScriptGenerationFailed(f"script generation failed: {_public_message(exc)}") from exc

    def _summary_script(self, full_text: str, tone: Optional[str], max_length_seconds: Optional[int]) -> Dict[str, Any]:
        try:
            return narrator_summary(
                full_text,
                tone=tone or self.config.default_tone,
                max_length_seconds=int(max_length_seconds or self.config.default_max_length_seconds),
                llm=self.llm,
            )
        except ScriptGenerationFailed:
            raise
        except (OSError, ValueError, RuntimeError) as exc:
            raise ScriptGenerationFailed(f"script generation failed: {_public_message(exc)}") from exc

    def _render_all(
        self,
        run: PipelineRun,
        submissions: Sequence[Tuple[int, str, str]],
        logger: RunLogger,
        tracker: _Progress,
        on_warning: Optional[WarningCallback],
    ) -> None:
        run.jobs = self.poller.submit_all(submissions)
        logger.save_step(
            "render_jobs",
            {"jobs": {str(idx): job.remote_job_id for idx, job in sorted(run.jobs.items())}},
        )
        tracker.update(0, len(run.jobs))

        def _warn(advisory: RenderTimeout) -> None:
            logger.log(
                f"render_warning: still processing after {advisory.elapsed_sec:.0f}s "
                f"pending={sorted(advisory.pending)}"
            )
            logger.save_step("render_jobs", {"pending_links": {str(k): v for k, v in advisory.pending.items()}})
            if on_warning is not None:
                on_warning(advisory)

        self.poller.poll_until_ready(run.jobs, on_sweep=tracker.update, on_warning=_warn)
        logger.save_step(
            "render_jobs",
            {"hosted_urls": {str(idx): job.hosted_url for idx, job in sorted(run.jobs.items())}},
        )

    def _stitch(self, run: PipelineRun, page_images: Dict[int, str], logger: RunLogger, prefix: str) -> str:
        clips_dir = os.path.join(run.work_dir, "clips")
        os.makedirs(clips_dir, exist_ok=True)
        clips: List[Tuple[int, str]] = []
        for page_index in sorted(run.jobs):
            job = run.jobs[page_index]
            raw_path = os.path.join(clips_dir, f"raw-{page_index}.mp4")
            self.media.download(job.download_url or "", raw_path)
            clips.append((page_index, raw_path))

        assembled = os.path.join(run.work_dir, f"{prefix}-{run.run_id}.mp4")
        result = self.media.stitch(clips, page_images, clips_dir, assembled)
        for segment in result["segments"]:
            if segment.get("missing_page_image"):
                logger.log(f"missing_page_image: page {segment['page_index']} normalized without background")
        logger.save_step("stitch", {"segments": result["segments"]})
        logger.save_step("output", {"probe": self.media.probe(assembled)})
        return assembled

    def _promote(self, run: PipelineRun, assembled: str, logger: RunLogger) -> str:
        output_dir = self.config.path("output_dir")
        os.makedirs(output_dir, exist_ok=True)
        final_path = os.path.join(output_dir, os.path.basename(assembled))
        shutil.move(assembled, final_path)
        run.output_path = final_path
        logger.save_step("output", {"path": final_path})
        return final_path

    def _fail(self, run: PipelineRun, logger: RunLogger, tracker: _Progress, exc: BaseException) -> PipelineFailed:
        payload: Dict[str, Any] = {
            "run_id": run.run_id,
            "stage": run.stage,
            "reason": getattr(exc, "reason", None) if isinstance(exc, PipelineError) else "UNEXPECTED_ERROR",
            "message": _public_message(exc),
            "page_index": exc.page_index if isinstance(exc, RenderJobFailed) else None,
        }
        failure = PipelineFailed(payload)
        run.error = failure
        # A promoted artifact must not outlive a failed run.
        if run.output_path and os.path.exists(run.output_path):
            os.unlink(run.output_path)
        run.output_path = None
        logger.log(f"stage_failure:{failure}")
        logger.finish("error", {"error": payload})
        tracker.enter(STAGE_ERROR)
        return failure

    def _cleanup(self, run: PipelineRun, logger: RunLogger) -> None:
        shutil.rmtree(run.work_dir, ignore_errors=True)
        if os.path.exists(run.work_dir):
            logger.log(f"cleanup_warning: workspace still present for run {run.run_id}")


def _public_message(exc: BaseException) -> str:
    # Caller-facing text: no filesystem paths or tracebacks.
    if isinstance(exc, PipelineError):
        return str(exc)
    if isinstance(exc, urllib.error.HTTPError):
        return f"HTTP {exc.code}: {exc.reason}"
    if isinstance(exc, urllib.error.URLError):
        return f"network error: {exc.reason}"
    return f"{type(exc).__name__} during pipeline run"


def _make_run_id() -> str:
    return f"run-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
