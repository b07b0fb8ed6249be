"""Config file I/O supporting JSON, YAML, and TOML.

Format is always inferred from the file extension:
  .json        → JSON
  .yaml / .yml → YAML  (requires pyyaml)
  .toml        → TOML  (read: stdlib tomllib; write: tomli-w)

Layout: one block per platform plus application keys, e.g.

    {"discord": {"token": "..."}, "revolt": {"token": "..."}, "admins": []}

A platform token may also come from ``WHISKER_<PLATFORM>_TOKEN``; the
environment wins over the file.
"""
from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import services.util as u

_YAML_EXTS = {".yaml", ".yml"}
_TOML_EXTS = {".toml"}

_CONFIG_NAMES = ["config.json", "config.yaml", "config.yml", "config.toml"]


def find_config(directory: Path) -> Path | None:
    """Return the first existing config file found in *directory*."""
    for name in _CONFIG_NAMES:
        p = directory / name
        if p.is_file():
            return p
    return None


def load_config(path: Path) -> dict[str, Any]:
    """Load a config file; format is inferred from the file extension."""
    ext = path.suffix.lower()
    if ext in _YAML_EXTS:
        import yaml  # pyyaml
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    elif ext in _TOML_EXTS:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    else:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def save_config(data: dict[str, Any], path: Path) -> None:
    """Save *data* to *path*; format is inferred from the file extension."""
    path.parent.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lower()
    if ext in _YAML_EXTS:
        import yaml  # pyyaml
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, allow_unicode=True, sort_keys=False, default_flow_style=False)
        return
    if ext in _TOML_EXTS:
        import tomli_w
        with open(path, "wb") as f:
            tomli_w.dump(data, f)
        return
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def apply_env_overrides(data: dict[str, Any], platforms: list[str]) -> dict[str, Any]:
    """Return a copy of *data* with ``WHISKER_<PLATFORM>_TOKEN`` applied.

    A platform block is created when only the environment variable is set.
    """
    merged = dict(data)
    for platform in platforms:
        token = u.get_env(f"WHISKER_{platform.upper()}_TOKEN")
        if token:
            block = dict(merged.get(platform) or {})
            block["token"] = token.strip()
            merged[platform] = block
    return merged
