"""
Lab Pool — Layered Configuration

A deployment's settings are assembled from up to three layers, later
layers winning key by key:

  1. pool_config.yaml                      shipped defaults
  2. <config dir>/<env>.yaml               per-site overlay (LP_ENV=prod)
  3. LP_<SECTION>__<KEY>=value             single-key overrides

    cfg = load_config("pool_config.yaml", env="prod")
    cfg["store"]["path"]                   → "/data/labpool.db"
    get_config_value("retry.attempts", cfg, 3)

The overlay directory is LP_CONFIG_DIR if set, else `config/` beside the
base file. Override values are read as YAML scalars, so
LP_AUDIT__ENABLED=false is a boolean and LP_RETRY__ATTEMPTS=5 an int.
The merged dict records what it was built from under `_layers` and the
active profile under `_env`.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger("labpool.config")

ENV_PREFIX = "LP_"

# LP_ variables that steer loading rather than override a key
_CONTROL_VARS = frozenset({"LP_ENV", "LP_CONFIG_DIR", "LP_CONFIG"})


def deep_merge(base: dict, overlay: Mapping) -> dict:
    """Return a new dict: nested dicts merge, everything else is replaced."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open() as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _overlay_path(base_path: Path, env: str, config_dir: str) -> Path | None:
    directory = Path(config_dir) if config_dir else base_path.parent / "config"
    for suffix in (".yaml", ".yml"):
        candidate = directory / f"{env}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def env_overrides(environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Turn LP_STORE__PATH=/x style variables into {"store": {"path": "/x"}}."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in sorted(environ):
        if not name.startswith(prefix) or name in _CONTROL_VARS:
            continue
        keys = [k for k in name[len(prefix):].lower().split("__") if k]
        if not keys:
            continue
        raw = environ[name]
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        node = overrides
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = node[key] = {}
            node = child
        node[keys[-1]] = value
    return overrides


def load_config(
    base_path: str = "pool_config.yaml",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """Merge base file, overlay, and LP_ overrides. A missing base file is an empty layer."""
    env = env or os.environ.get("LP_ENV", "")
    config_dir = config_dir or os.environ.get("LP_CONFIG_DIR", "")
    base = Path(base_path)

    cfg: dict[str, Any] = {}
    layers: list[str] = []

    if base.is_file():
        cfg = _read_yaml(base)
        layers.append(str(base))
    else:
        logger.warning("Config file %s not found, using defaults", base)

    if env:
        overlay = _overlay_path(base, env, config_dir)
        if overlay is not None:
            cfg = deep_merge(cfg, _read_yaml(overlay))
            layers.append(str(overlay))
        else:
            logger.info("No overlay for env %r", env)

    if include_env_vars:
        overrides = env_overrides()
        if overrides:
            cfg = deep_merge(cfg, overrides)
            layers.append("environment")

    logger.debug("Config assembled from %s", layers or ["defaults"])
    cfg["_env"] = env or "default"
    cfg["_layers"] = layers
    return cfg


def get_config_value(path: str, config: Mapping[str, Any], default: Any = None) -> Any:
    """Dotted lookup: get_config_value("store.path", cfg)."""
    node: Any = config
    for key in path.split("."):
        if not isinstance(node, Mapping) or key not in node:
            return default
        node = node[key]
    return node
