"""Minimal HTTP client for the avatar video rendering service (Tavus-style API)."""
from __future__ import annotations

import json
import os
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .settings import load_config

STATUS_QUEUED = "queued"
STATUS_GENERATING = "generating"
STATUS_READY = "ready"
STATUS_FAILED = "failed"

# Remote vocabulary -> RenderJob status.
_REMOTE_STATUS = {
    "queued": STATUS_QUEUED,
    "generating": STATUS_GENERATING,
    "ready": STATUS_READY,
    "error": STATUS_FAILED,
    "deleted": STATUS_FAILED,
}


@dataclass
class AvatarConfig:
    base_url: str = "https://tavusapi.com"
    api_key: str = ""
    replica_id: str = ""
    request_timeout_sec: float = 30.0


@dataclass
class JobStatus:
    state: str
    hosted_url: Optional[str] = None
    download_url: Optional[str] = None
    error_message: Optional[str] = None


def _load_default_config() -> AvatarConfig:
    cfg = load_config(AvatarConfig, "avatar")
    cfg.base_url = (os.getenv("TAVUS_BASE_URL") or cfg.base_url).strip()
    cfg.api_key = (os.getenv("TAVUS_API_KEY") or cfg.api_key).strip()
    cfg.replica_id = (os.getenv("TAVUS_REPLICA_ID") or cfg.replica_id).strip()
    return cfg


class AvatarVideoClient:
    def __init__(self, config: Optional[AvatarConfig] = None) -> None:
        self.config = config or _load_default_config()
        self.base_url = self.config.base_url.rstrip("/")

    def submit(self, script_text: str, label: str) -> str:
        """POST /v2/videos and return the remote video id."""
        if not (script_text or "").strip():
            raise ValueError("script text is required")
        payload: Dict[str, Any] = {
            "replica_id": self.config.replica_id,
            "script": script_text,
            "video_name": label,
        }
        result = self._request("POST", "/v2/videos", payload)
        video_id = str(result.get("video_id") or "").strip()
        if not video_id:
            raise RuntimeError("render submit failed: missing video_id")
        return video_id

    def status(self, remote_job_id: str) -> JobStatus:
        """GET /v2/videos/{id} and normalize the remote status."""
        if not remote_job_id:
            raise ValueError("remote job id is required")
        result = self._request("GET", f"/v2/videos/{urllib.parse.quote(remote_job_id)}")
        remote = str(result.get("status") or "").strip().lower()
        state = _REMOTE_STATUS.get(remote, STATUS_GENERATING)
        return JobStatus(
            state=state,
            hosted_url=result.get("hosted_url") or None,
            download_url=result.get("download_url") or None,
            error_message=result.get("error_message") or (f"video {remote}" if state == STATUS_FAILED else None),
        )

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        with urllib.request.urlopen(req, timeout=self.config.request_timeout_sec) as resp:
            parsed = json.loads(resp.read().decode("utf-8") or "{}")
        if not isinstance(parsed, dict):
            raise RuntimeError(f"unexpected response from {method} {path}")
        return parsed
