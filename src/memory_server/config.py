"""Memory server configuration.

``load_config`` starts from :data:`DEFAULTS` and overlays, in order: one YAML
file (argument, ``$MEMORY_SERVER_CONFIG`` or ``config/default.yaml``),
``$REDIS_URL``, then ``MEMORY_SERVER__SECTION__KEY`` variables such as
``MEMORY_SERVER__MEMORY__WINDOW_SIZE=20``.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "redis": {"url": "redis://localhost:6379/0"},
    "memory": {"window_size": 12},
    "compaction": {
        "enabled": True,
        "summarizer": "extractive",
        "max_context_chars": 4000,
    },
    "logging": {"level": "INFO"},
}


ENV_PREFIX = "MEMORY_SERVER__"
DEFAULT_CONFIG_PATH = "config/default.yaml"


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in over.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _merge(base[k], v)
        else:
            base[k] = v
    return base


def _coerce(raw: str) -> Any:
    """Read an env value as a YAML scalar, so ``20`` is an int and ``off`` a bool.

    Anything that does not parse to a plain scalar stays the raw string.
    """
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if isinstance(value, (bool, int, float)):
        return value
    return raw


def _set_path(cfg: Dict[str, Any], path: List[str], value: Any) -> None:
    section = cfg
    for name in path[:-1]:
        child = section.get(name)
        if not isinstance(child, dict):
            child = section[name] = {}
        section = child
    section[path[-1]] = value


def _env_overrides(environ: Mapping[str, str]) -> Iterator[Tuple[List[str], Any]]:
    """Yield ``(["memory", "window_size"], 20)`` for ``MEMORY_SERVER__MEMORY__WINDOW_SIZE=20``."""
    for name in sorted(environ):
        if not name.startswith(ENV_PREFIX):
            continue
        path = [p for p in name[len(ENV_PREFIX):].lower().split("__") if p]
        if not path:
            continue
        yield path, _coerce(environ[name])


def _validate(cfg: Dict[str, Any]) -> Dict[str, Any]:
    try:
        window = int(cfg["memory"]["window_size"])
    except (KeyError, TypeError, ValueError) as e:
        raise RuntimeError(f"memory.window_size must be an integer: {e}") from e
    if window < 1:
        raise RuntimeError(f"memory.window_size must be >= 1, got {window}")
    cfg["memory"]["window_size"] = window
    return cfg


def _finish(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Layer ``REDIS_URL`` and then ``MEMORY_SERVER__*`` over ``cfg`` and validate."""
    if os.environ.get("REDIS_URL"):
        _set_path(cfg, ["redis", "url"], os.environ["REDIS_URL"])
    for path, value in _env_overrides(os.environ):
        logger.debug("Config override %s from environment", ".".join(path))
        _set_path(cfg, path, value)
    return _validate(cfg)


def _config_path(path: Optional[str]) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.environ.get("MEMORY_SERVER_CONFIG") or DEFAULT_CONFIG_PATH)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise RuntimeError(f"Failed to parse config file {path}: {e}") from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path}, expected a mapping.")
    return loaded


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the memory server configuration.

    The file is ``path`` if given, else ``$MEMORY_SERVER_CONFIG``, else
    ``config/default.yaml``. A missing file only logs a warning. The result is
    the built-in defaults overlaid with the file, then ``REDIS_URL``, then
    ``MEMORY_SERVER__`` overrides.
    """
    cfg: Dict[str, Any] = copy.deepcopy(DEFAULTS)
    source = _config_path(path)
    if source.is_file():
        _merge(cfg, _read_yaml(source))
    else:
        logger.warning("Config file not found at %s. Using defaults.", source)
    return _finish(cfg)


def setup_logging(level: str | int = "INFO") -> None:
    """Configure root logging once for the process."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
