"""Service configuration: a nested mapping read from a JSON file."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from filesrv.util import ensure_dir

log = logging.getLogger(__name__)


def _coerce(value: Any, default: Any) -> Any:
    """Return value if it has the type of default, else default."""
    if isinstance(default, list):
        ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
        return list(value) if ok else default
    if isinstance(value, bool) != isinstance(default, bool):
        return default
    if isinstance(default, float) and isinstance(value, int):
        return float(value)
    return value if isinstance(value, type(default)) else default


class Config:
    """Nested configuration values addressed by a path of keys."""

    def __init__(self, values: dict | None = None) -> None:
        self._values: dict = copy.deepcopy(dict(values or {}))

    def get(self, *args: str, default: Any = None) -> Any:
        """Value at the key path, or default when missing or of the wrong type."""
        node: Any = self._values
        for key in args:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node if default is None else _coerce(node, default)

    def set(self, value: Any, *args: str) -> None:
        """Store value at the key path, creating intermediate sections."""
        if not args:
            raise ValueError("a key path is required")
        node = self._values
        for key in args[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[args[-1]] = value

    def ensure_dir_base(self) -> Path | None:
        """Create the configured base directory; None if unset or not creatable."""
        base = self.get("dir_base", default="")
        if not base:
            return None
        try:
            return ensure_dir(base)
        except OSError:
            log.error("[Config][DirBase] Create directory failed!: %s", base)
            return None


def load_config(path: str | Path | None) -> Config:
    """Read a JSON object from path; no path gives an empty configuration."""
    if path is None:
        return Config()
    with open(path, encoding="utf-8") as fh:
        values = json.load(fh)
    if not isinstance(values, dict):
        raise ValueError(f"configuration in {path} must be a JSON object")
    return Config(values)