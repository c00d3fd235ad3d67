from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional, Dict

import yaml

from hotloop.hotloop_errors import ConfigError

CONFIG_ENV_VAR = "HOTLOOP_CONFIG"
DEFAULT_CONFIG_NAMES = ("hotloop.yaml", "hotloop.yml", "hotloop.toml", "hotloop.json")


@dataclass(frozen=True)
class HotloopConfig:
    """Settings shared by the loop, the code cache and the console."""
    exit_sentinel: str = "x"
    encoding: str = "utf-8"
    rule_width: int = 93
    poll_interval: float = 2.0
    http_timeout: float = 5.0
    http_retries: int = 2
    http_backoff: float = 0.2
    log_level: str = "INFO"
    max_value_length: int = 2000

    # Mustache templates for the console transcript
    banner_template: str = "\n\n{{heavy_rule}}\n Running script '{{path}}'\n{{rule}}"
    success_template: str = "-----------\n  Took {{ms}} ms - Script returned: {{value}}"
    failure_template: str = "WHOOPS! GOT AN EXCEPTION!   ({{ms}} ms since start)"
    footer_template: str = "{{rule}}"
    prompt_template: str = "\nHit enter to run again, or '{{sentinel}}' and enter to exit."

    def with_overrides(self, **overrides: Any) -> 'HotloopConfig':
        return replace(self, **_normalize_keys(overrides))


def _normalize_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name: f for f in fields(HotloopConfig)}
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).replace("-", "_")
        if name not in known:
            raise ConfigError(f"Unknown configuration key: {key!r}")
        out[name] = value
    return out


def _read_mapping(path: Path) -> Dict[str, Any]:
    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    try:
        if ext in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif ext == ".toml":
            data = tomllib.loads(text)
        elif ext == ".json":
            data = json.loads(text)
        else:
            raise ConfigError(f"Unsupported configuration format: {path}")
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping, got {type(data).__name__}")
    # Allow the settings to live under a top-level 'hotloop' table
    if set(data.keys()) == {"hotloop"} and isinstance(data["hotloop"], dict):
        return data["hotloop"]
    return data


def find_config_file(cwd: Optional[str] = None) -> Optional[Path]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path).expanduser()
        if not p.is_file():
            raise ConfigError(f"{CONFIG_ENV_VAR} points to a missing file: {env_path}")
        return p
    base = Path(cwd) if cwd else Path.cwd()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Optional[str] = None, *, cwd: Optional[str] = None) -> HotloopConfig:
    """
    Build a HotloopConfig.

    Lookup order: explicit `path`, then $HOTLOOP_CONFIG, then hotloop.yaml /
    .yml / .toml / .json in the working directory. No file means defaults.
    """
    if path is not None:
        cfg_path: Optional[Path] = Path(path).expanduser()
        if not cfg_path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
    else:
        cfg_path = find_config_file(cwd)
    if cfg_path is None:
        return HotloopConfig()
    return HotloopConfig(**_normalize_keys(_read_mapping(cfg_path)))
