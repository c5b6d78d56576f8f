from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "style": {"path": "styles/basic_style.yaml", "data": None},
    "tiles": {
        "size": 256,
        "format": "png",
        "scheme": "xyz",      # xyz: row 0 at the top; tms: row 0 at the bottom
        "max_zoom": 20,
        "cache_max_age": 60,
    },
    "engine": {"pool_size": 1},
    "server": {"host": "0.0.0.0", "port": 8080, "debug": False},
    "logging": {"level": "INFO"},
}


def _merge(base: Dict, override: Dict) -> Dict:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _truthy(v: str) -> bool:
    return v.strip().lower() not in {"", "0", "false", "no", "off"}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML config and merge it over DEFAULTS.

    Path precedence: explicit `path`, env TILE_SERVER_CONFIG, config/params.yaml.
    A missing file yields the defaults. Env overrides applied last:
      - TILE_SERVER_STYLE -> style.path
      - TILE_SERVER_DATA -> style.data
      - TILE_SERVER_DEBUG -> server.debug
      - LOG_LEVEL -> logging.level
    """
    path = path or os.getenv("TILE_SERVER_CONFIG") or DEFAULT_CONFIG_PATH
    loaded: Dict[str, Any] = {}
    p = Path(path)
    if p.exists():
        with p.open("r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"config {path} must be a mapping")
    cfg = _merge(DEFAULTS, loaded)

    if os.getenv("TILE_SERVER_STYLE"):
        cfg["style"]["path"] = os.environ["TILE_SERVER_STYLE"]
    if os.getenv("TILE_SERVER_DATA"):
        cfg["style"]["data"] = os.environ["TILE_SERVER_DATA"]
    if os.getenv("TILE_SERVER_DEBUG") is not None:
        cfg["server"]["debug"] = _truthy(os.environ["TILE_SERVER_DEBUG"])
    if os.getenv("LOG_LEVEL"):
        cfg["logging"]["level"] = os.environ["LOG_LEVEL"]
    return cfg
