from __future__ import annotations

import pytest

from orchestrator.poller import PollConfig
from orchestrator.run_logger import RunLogger
from orchestrator.settings import load_config, load_section


def test_load_config_overlays_and_coerces(monkeypatch, tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("poll:\n  poll_interval_sec: 2\n  max_sweeps: '5'\n  unknown_key: 1\n", encoding="utf-8")
    monkeypatch.setenv("PIPELINE_CONFIG", str(path))
    cfg = load_config(PollConfig, "poll")
    assert cfg.poll_interval_sec == 2.0
    assert cfg.max_sweeps == 5
    assert cfg.warn_after_sec == 600.0
    assert not hasattr(cfg, "unknown_key")


def test_missing_file_and_section(monkeypatch, tmp_path):
    monkeypatch.setenv("PIPELINE_CONFIG", str(tmp_path / "nope.yaml"))
    assert load_section("poll") == {}
    path = tmp_path / "defaults.yaml"
    path.write_text("media: {}\n", encoding="utf-8")
    assert load_section("poll", str(path)) == {}


def test_non_mapping_section_is_rejected(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("poll: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_section("poll", str(path))


def test_run_logger_records_stages_and_steps(tmp_path):
    logger = RunLogger(str(tmp_path / "runs" / "run-1"))
    logger.stage("rasterizing_pages")
    logger.save_step("render_jobs", {"jobs": {"0": "v0"}})
    logger.save_step("render_jobs", {"hosted_urls": {"0": "https://hosted/0"}})
    logger.finish("done", {"output_path": "/out.mp4"})

    assert logger.manifest["run_id"] == "run-1"
    assert [s["stage"] for s in logger.manifest["stages"]] == ["rasterizing_pages"]
    assert set(logger.manifest["steps"]["render_jobs"]) == {"jobs", "hosted_urls"}
    assert logger.manifest["status"] == "done"
    assert "stage:rasterizing_pages" in open(logger.log_path, encoding="utf-8").read()
