"""Submit per-page render jobs and poll them to a terminal state."""
from __future__ import annotations

import http.client
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .avatar_client import (
    STATUS_FAILED,
    STATUS_GENERATING,
    STATUS_QUEUED,
    STATUS_READY,
    JobStatus,
)
from .errors import RenderJobFailed, RenderTimeout
from .settings import load_config

TERMINAL_STATES = {STATUS_READY, STATUS_FAILED}
KNOWN_STATES = {STATUS_QUEUED, STATUS_GENERATING, STATUS_READY, STATUS_FAILED}


@dataclass
class PollConfig:
    poll_interval_sec: float = 10.0
    warn_after_sec: float = 600.0
    # 0 disables the ceiling.
    max_wait_sec: float = 3600.0
    max_sweeps: int = 0
    submit_concurrency: int = 4


@dataclass
class RenderJob:
    page_index: int
    remote_job_id: str
    status: str = STATUS_QUEUED
    hosted_url: Optional[str] = None
    download_url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def apply(self, update: JobStatus) -> None:
        state = update.state if update.state in KNOWN_STATES else STATUS_GENERATING
        if state == STATUS_READY and not update.download_url:
            # Ready without a URL is not usable yet; check again next sweep.
            state = STATUS_GENERATING
        self.status = state
        if update.hosted_url:
            self.hosted_url = update.hosted_url
        self.download_url = update.download_url if state == STATUS_READY else None
        self.error_message = (update.error_message or "unknown error") if state == STATUS_FAILED else None


SweepCallback = Callable[[int, int], None]
WarningCallback = Callable[[RenderTimeout], None]


class JobPoller:
    def __init__(
        self,
        client,
        config: Optional[PollConfig] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.config = config or load_config(PollConfig, "poll")
        self._sleep = sleep
        self._clock = clock

    def submit_all(self, items: Sequence[Tuple[int, str, str]]) -> Dict[int, RenderJob]:
        """Submit (page_index, script_text, label) tuples; returns page_index -> RenderJob."""
        seen = set()
        for page_index, _, _ in items:
            if page_index in seen:
                raise ValueError(f"duplicate page index: {page_index}")
            seen.add(page_index)
        if not items:
            return {}

        jobs: Dict[int, RenderJob] = {}
        max_workers = max(1, min(int(self.config.submit_concurrency or 1), len(items)))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self.client.submit, script_text, label): page_index
                for page_index, script_text, label in items
            }
            for fut in as_completed(futures):
                page_index = futures[fut]
                jobs[page_index] = RenderJob(page_index=page_index, remote_job_id=fut.result())
        return jobs

    def poll_until_ready(
        self,
        jobs: Dict[int, RenderJob],
        on_sweep: Optional[SweepCallback] = None,
        on_warning: Optional[WarningCallback] = None,
    ) -> Dict[int, RenderJob]:
        """Sweep every outstanding job until all are ready or one fails."""
        total = len(jobs)
        started = self._clock()
        warned = False
        sweeps = 0
        while True:
            sweeps += 1
            for page_index in sorted(jobs):
                job = jobs[page_index]
                if job.terminal:
                    continue
                try:
                    update = self.client.status(job.remote_job_id)
                except (OSError, http.client.HTTPException):
                    # Network hiccup or truncated body: the job is simply not terminal this sweep.
                    continue
                job.apply(update)
                if job.status == STATUS_FAILED:
                    raise RenderJobFailed(page_index, job.error_message or "", job.remote_job_id)

            ready = sum(1 for job in jobs.values() if job.status == STATUS_READY)
            if on_sweep is not None:
                on_sweep(ready, total)
            if ready == total:
                return jobs

            elapsed = self._clock() - started
            pending = {idx: job.hosted_url for idx, job in jobs.items() if job.status != STATUS_READY}
            if self.config.max_wait_sec and elapsed >= self.config.max_wait_sec:
                raise RenderTimeout(pending, elapsed, fatal=True)
            if self.config.max_sweeps and sweeps >= self.config.max_sweeps:
                raise RenderTimeout(pending, elapsed, fatal=True)
            if not warned and self.config.warn_after_sec and elapsed >= self.config.warn_after_sec:
                warned = True
                if on_warning is not None:
                    on_warning(RenderTimeout(pending, elapsed, fatal=False))
            self._sleep(float(self.config.poll_interval_sec))


def build_submissions(scripts: List[Tuple[int, str]]) -> List[Tuple[int, str, str]]:
    """Attach the render label to each (page_index, script) pair."""
    return [(idx, text, render_label(idx)) for idx, text in scripts]


def render_label(page_index: int) -> str:
    return "Intro" if page_index == 0 else f"Page {page_index}"
