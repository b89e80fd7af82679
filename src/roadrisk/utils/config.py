from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


API_BASE_ENV = "ROADRISK_API_BASE_URL"


def load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a dict at root of YAML: {path}")
    return data


def resolve_path(path: str, base_dir: Optional[str] = None) -> str:
    p = Path(path)
    if p.is_absolute():
        return str(p)
    if base_dir is None:
        base_dir = os.getcwd()
    return str((Path(base_dir) / p).resolve())


def section(cfg: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = cfg.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a dict")
    return dict(value)


def api_base_url(cfg: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    override = env.get(API_BASE_ENV)
    if override:
        return override.strip().rstrip("/")
    return str(cfg.get("base_url") or "").strip().rstrip("/")
