"""YAML-backed defaults shared by the collaborator configs."""
import os
from dataclasses import fields
from typing import Any, Dict, Type, TypeVar

import yaml

DEFAULT_CONFIG_PATH = os.path.join("config", "defaults.yaml")

T = TypeVar("T")


def config_path() -> str:
    return (os.getenv("PIPELINE_CONFIG") or "").strip() or DEFAULT_CONFIG_PATH


def load_section(name: str, path: str | None = None) -> Dict[str, Any]:
    """Return one top-level mapping from the defaults file, or {} if absent."""
    path = path or config_path()
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        payload = yaml.safe_load(f) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"config file must be a mapping: {path}")
    section = payload.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"config section {name!r} must be a mapping: {path}")
    return section


def apply_section(cfg: T, section: Dict[str, Any]) -> T:
    """Overlay known keys onto a dataclass instance, coercing to the default's type."""
    for field in fields(cfg):  # type: ignore[arg-type]
        if field.name not in section:
            continue
        current = getattr(cfg, field.name)
        value = section[field.name]
        if isinstance(current, bool):
            value = _as_bool(value)
        elif isinstance(current, int):
            value = int(value)
        elif isinstance(current, float):
            value = float(value)
        elif isinstance(current, str):
            value = str(value)
        setattr(cfg, field.name, value)
    return cfg


def load_config(cls: Type[T], name: str) -> T:
    return apply_section(cls(), load_section(name))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
