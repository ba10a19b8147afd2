"""Per-run log file and JSON manifest for observability."""
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict


class RunLogger:
    def __init__(self, run_dir: str) -> None:
        self.run_dir = run_dir
        os.makedirs(self.run_dir, exist_ok=True)
        self.log_path = os.path.join(self.run_dir, "run.log")
        self.manifest_path = os.path.join(self.run_dir, "run_manifest.json")
        self.manifest: Dict[str, Any] = {
            "run_id": os.path.basename(os.path.normpath(run_dir)),
            "started_at": _now(),
            "stages": [],
            "steps": {},
        }
        self._flush()

    def log(self, message: str) -> None:
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(f"[{_now()}] {message}\n")

    def stage(self, stage: str) -> None:
        self.manifest["stages"].append({"stage": stage, "at": _now()})
        self.log(f"stage:{stage}")
        self._flush()

    def save_step(self, step: str, payload: Dict[str, Any]) -> None:
        self.manifest["steps"].setdefault(step, {}).update(payload)
        self._flush()

    def finish(self, status: str, payload: Dict[str, Any]) -> None:
        self.manifest["status"] = status
        self.manifest["finished_at"] = _now()
        self.manifest.setdefault("result", {}).update(payload)
        self._flush()

    def _flush(self) -> None:
        self.manifest["updated_at"] = _now()
        with open(self.manifest_path, "w", encoding="utf-8") as f:
            json.dump(self.manifest, f, ensure_ascii=True, indent=2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
