"""
FFmpeg media operations: canonical normalization, PiP compositing and
stream-copy concatenation.
"""
import os
import shutil
import subprocess
import tempfile
import time
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import cv2

from orchestrator.errors import (
    CompositeFailed,
    ConcatFailed,
    EncodeFailed,
    MediaToolError,
    MissingPageImage,
)
from orchestrator.settings import load_config

DOWNLOAD_SCHEMES = {"http", "https"}


@dataclass
class MediaConfig:
    width: int = 1280
    height: int = 720
    fps: int = 30
    video_codec: str = "libx264"
    preset: str = "fast"
    crf: int = 23
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    sample_rate: int = 44100
    channels: int = 2
    pip_width: int = 280
    pip_margin: int = 20
    clip_timeout_sec: float = 120.0
    concat_timeout_sec: float = 300.0
    download_timeout_sec: float = 120.0


class MediaService:
    def __init__(self, config: Optional[MediaConfig] = None) -> None:
        self.config = config or load_config(MediaConfig, "media")
        self.ffmpeg_bin = os.getenv("FFMPEG_BIN", "ffmpeg")

    def normalize(self, input_path: str, output_path: str) -> str:
        """Re-encode one clip to the canonical profile, padding to keep aspect ratio."""
        cfg = self.config
        vf = (
            f"scale={cfg.width}:{cfg.height}:force_original_aspect_ratio=decrease,"
            f"pad={cfg.width}:{cfg.height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        )
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i",
            input_path,
            "-vf",
            vf,
            *self._encode_args(),
            output_path,
        ]
        run_tool(cmd, timeout=cfg.clip_timeout_sec, error_cls=EncodeFailed, what="normalize")
        return output_path

    def composite(self, image_path: str, clip_path: str, output_path: str, page_index: int = 0) -> str:
        """Full-frame page image with the talking-head clip in the bottom-right corner."""
        if not os.path.isfile(image_path):
            raise MissingPageImage(page_index)
        cfg = self.config
        filter_complex = (
            f"[0:v]scale={cfg.width}:{cfg.height},setsar=1[bg];"
            f"[1:v]scale={cfg.pip_width}:-1[avatar];"
            f"[bg][avatar]overlay=W-w-{cfg.pip_margin}:H-h-{cfg.pip_margin}:shortest=1[out]"
        )
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-loop",
            "1",
            "-i",
            image_path,
            "-i",
            clip_path,
            "-filter_complex",
            filter_complex,
            "-map",
            "[out]",
            "-map",
            "1:a",
            *self._encode_args(),
            "-shortest",
            output_path,
        ]
        run_tool(cmd, timeout=cfg.clip_timeout_sec, error_cls=CompositeFailed, what="composite")
        return output_path

    def concat(self, clip_paths: Sequence[str], output_path: str, manifest_path: Optional[str] = None) -> str:
        """Join canonical clips in order using the concat demuxer and stream copy.

        The manifest defaults to `<output stem>.list.txt` beside the output.
        """
        if not clip_paths:
            raise ConcatFailed("nothing to concatenate")
        manifest_path = manifest_path or concat_manifest_path(output_path)
        write_concat_manifest(manifest_path, clip_paths)
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            manifest_path,
            "-c",
            "copy",
            output_path,
        ]
        run_tool(cmd, timeout=self.config.concat_timeout_sec, error_cls=ConcatFailed, what="concat")
        return output_path

    def stitch(
        self,
        clips: Sequence[Tuple[int, str]],
        page_images: Dict[int, str],
        work_dir: str,
        output_path: str,
    ) -> Dict[str, Any]:
        """Prepare every (page_index, raw clip) pair and concatenate them by page index.

        Index 0 is the intro and is always normalized full-screen. Pages with an
        image on disk are composited; pages without one fall back to plain
        normalization.
        """
        prepared: List[str] = []
        decisions: List[Dict[str, Any]] = []
        for page_index, raw_path in sorted(clips, key=lambda item: item[0]):
            image_path = page_images.get(page_index) if page_index > 0 else None
            if page_index > 0 and image_path and os.path.isfile(image_path):
                out = os.path.join(work_dir, f"composited-{page_index}.mp4")
                self.composite(image_path, raw_path, out, page_index=page_index)
                mode = "composited"
            else:
                out = os.path.join(work_dir, f"normalized-{page_index}.mp4")
                self.normalize(raw_path, out)
                mode = "normalized"
            decision: Dict[str, Any] = {"page_index": page_index, "mode": mode}
            if page_index > 0 and mode == "normalized":
                decision["missing_page_image"] = True
            decisions.append(decision)
            prepared.append(out)
        manifest_path = os.path.join(work_dir, "list.txt")
        self.concat(prepared, output_path, manifest_path)
        return {"output_path": output_path, "segments": decisions, "clips": prepared}

    def stitch_urls(self, video_urls: Sequence[str], work_root: str, output_dir: str) -> Dict[str, Any]:
        """Download two or more clips, normalize each and join them in the order given."""
        urls = [str(url).strip() for url in video_urls if str(url or "").strip()]
        if len(urls) < 2:
            raise ValueError("at least 2 video URLs are required")
        os.makedirs(work_root, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix="stitch-", dir=work_root)
        try:
            prepared: List[str] = []
            for idx, url in enumerate(urls):
                raw_path = self.download(url, os.path.join(work_dir, f"raw-{idx}.mp4"))
                prepared.append(self.normalize(raw_path, os.path.join(work_dir, f"normalized-{idx}.mp4")))
            name = f"stitched-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.mp4"
            assembled = self.concat(prepared, os.path.join(work_dir, name), os.path.join(work_dir, "list.txt"))
            os.makedirs(output_dir, exist_ok=True)
            final_path = os.path.join(output_dir, name)
            shutil.move(assembled, final_path)
            return {"output_path": final_path, "clip_count": len(prepared), "probe": self.probe(final_path)}
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def download(self, url: str, dest_path: str) -> str:
        """Fetch a rendered clip over HTTP(S) into the workspace."""
        if urllib.parse.urlparse(url or "").scheme not in DOWNLOAD_SCHEMES:
            raise ValueError("download url must be an http or https URL")
        req = urllib.request.Request(url, method="GET")
        with urllib.request.urlopen(req, timeout=self.config.download_timeout_sec) as resp:
            with open(dest_path, "wb") as f:
                shutil.copyfileobj(resp, f)
        if os.path.getsize(dest_path) == 0:
            raise RuntimeError(f"download returned an empty body for {os.path.basename(dest_path)}")
        return dest_path

    def probe(self, path: str) -> Dict[str, Any]:
        cap = cv2.VideoCapture(path)
        try:
            fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        finally:
            cap.release()
        return {
            "width": width,
            "height": height,
            "fps": fps,
            "frame_count": frame_count,
            "duration_sec": (float(frame_count) / fps) if fps > 0 else 0.0,
            "size_bytes": os.path.getsize(path) if os.path.exists(path) else 0,
        }

    def _encode_args(self) -> List[str]:
        cfg = self.config
        return [
            "-c:v",
            cfg.video_codec,
            "-preset",
            cfg.preset,
            "-crf",
            str(cfg.crf),
            "-pix_fmt",
            cfg.pix_fmt,
            "-r",
            str(cfg.fps),
            "-c:a",
            cfg.audio_codec,
            "-ar",
            str(cfg.sample_rate),
            "-ac",
            str(cfg.channels),
        ]


def run_tool(
    cmd: List[str],
    *,
    timeout: float,
    error_cls: Type[MediaToolError],
    what: str,
    tag: str = "media",
) -> None:
    """Run an external tool as an argument vector with a wall-clock budget."""
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        print(f"[{tag}] {what} timed out after {timeout:.0f}s: {' '.join(cmd)}", flush=True)
        raise error_cls(
            f"{what} timed out after {timeout:.0f}s",
            cmd=cmd,
            stderr_tail=_tail(exc.stderr),
            timed_out=True,
        ) from exc
    except OSError as exc:
        print(f"[{tag}] {what} could not start {cmd[0]}: {exc}", flush=True)
        raise error_cls(f"{what} could not start {os.path.basename(cmd[0])}", cmd=cmd) from exc
    if proc.returncode != 0:
        stderr_tail = _tail(proc.stderr)
        print(f"[{tag}] {what} failed (exit {proc.returncode}): {' '.join(cmd)}", flush=True)
        if stderr_tail:
            print(f"[{tag}] stderr:\n{stderr_tail}", flush=True)
        raise error_cls(
            f"{what} failed with exit code {proc.returncode}",
            cmd=cmd,
            returncode=proc.returncode,
            stderr_tail=stderr_tail,
        )


def write_concat_manifest(path: str, clip_paths: Sequence[str]) -> str:
    with open(path, "w", encoding="utf-8") as f:
        for clip in clip_paths:
            f.write(f"file '{_concat_quote(os.path.abspath(clip))}'\n")
    return path


def concat_manifest_path(output_path: str) -> str:
    stem, _ = os.path.splitext(os.path.abspath(output_path))
    return f"{stem}.list.txt"


def _concat_quote(path: str) -> str:
    return path.replace("'", "'\\''")


def _tail(text: Any, limit: int = 4000) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return str(text)[-limit:]
