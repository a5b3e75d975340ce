"""Read-only configuration: server profiles and TUI options.

The file is YAML:

    currentProfile: work
    profiles:
      work:
        serverUrl: http://localhost:8080
        apiToken: abc123
    tui:
      editor: nvim
      fuzzySearchLimit: 50

Environment variables ``TRILIUM_SERVER_URL`` / ``TRILIUM_API_TOKEN`` override
the selected profile. Nothing here ever writes the file back.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError, ValidationError

DEFAULT_CONFIG_PATH = Path("~/.trilium-cli/config.yaml")
ENV_SERVER_URL = "TRILIUM_SERVER_URL"
ENV_API_TOKEN = "TRILIUM_API_TOKEN"


@dataclass(frozen=True)
class Profile:
    """Connection settings for one Trilium server."""

    name: str
    server_url: str
    api_token: str = ""


@dataclass(frozen=True)
class TuiConfig:
    """Interactive UI options."""

    editor: str | None = None  # overrides $VISUAL / $EDITOR
    fuzzy_search_limit: int = 50
    server_search_limit: int = 100
    default_split_ratio: float = 0.3
    status_timeout: float = 3.0  # seconds a status message stays visible
    max_log_entries: int = 1000
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    sync_branch_expansion: bool = False  # mirror expand/collapse to the server


@dataclass(frozen=True)
class Config:
    profile: Profile
    tui: TuiConfig = field(default_factory=TuiConfig)
    path: Path | None = None


# camelCase file key -> (TuiConfig field, type)
_TUI_KEYS: dict[str, tuple[str, type]] = {
    "editor": ("editor", str),
    "fuzzySearchLimit": ("fuzzy_search_limit", int),
    "serverSearchLimit": ("server_search_limit", int),
    "defaultSplitRatio": ("default_split_ratio", float),
    "statusTimeout": ("status_timeout", float),
    "maxLogEntries": ("max_log_entries", int),
    "maxAttempts": ("max_attempts", int),
    "baseDelay": ("base_delay", float),
    "backoffMultiplier": ("backoff_multiplier", float),
    "syncBranchExpansion": ("sync_branch_expansion", bool),
}


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_tui_config(raw: Mapping[str, Any]) -> TuiConfig:
    """Build TuiConfig from the ``tui:`` block. Unknown keys are ignored."""
    values: dict[str, Any] = {}
    for key, (attr, kind) in _TUI_KEYS.items():
        if key not in raw or raw[key] is None:
            continue
        value = raw[key]
        if kind is bool:
            if not isinstance(value, bool):
                raise ValidationError(f"tui.{key} must be true or false", field=key)
        elif kind in (int, float):
            if isinstance(value, bool):
                raise ValidationError(f"tui.{key} must be a number", field=key)
            try:
                value = kind(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"tui.{key} must be a number (got {value!r})", field=key) from e
        else:
            value = str(value)
        values[attr] = value

    cfg = TuiConfig(**values)

    if cfg.max_attempts < 1:
        raise ValidationError("tui.maxAttempts must be at least 1", field="maxAttempts")
    if cfg.base_delay < 0 or cfg.backoff_multiplier < 1:
        raise ValidationError("tui.baseDelay must be >= 0 and tui.backoffMultiplier >= 1", field="baseDelay")
    if not 0.1 <= cfg.default_split_ratio <= 0.9:
        raise ValidationError("tui.defaultSplitRatio must be between 0.1 and 0.9", field="defaultSplitRatio")
    return cfg


def load_config(
    path: Path | None = None,
    *,
    profile_name: str | None = None,
    server_url: str | None = None,
    api_token: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Resolve the active profile and TUI options.

    Precedence for the connection: explicit arguments, then environment,
    then the config file. A missing file is fine as long as a server URL
    comes from somewhere else.
    """
    env = os.environ if environ is None else environ
    cfg_path = (path or DEFAULT_CONFIG_PATH).expanduser()

    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            data = _coerce_dict(yaml.safe_load(cfg_path.read_text(encoding="utf-8")))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {cfg_path}: {e}") from e
    elif path is not None:
        raise ConfigError(f"Config file not found: {cfg_path}")

    profiles = _coerce_dict(data.get("profiles"))
    name = profile_name or str(data.get("currentProfile") or "default")
    if profile_name and profile_name not in profiles:
        raise ConfigError(f"Profile '{profile_name}' not found in {cfg_path}")
    raw_profile = _coerce_dict(profiles.get(name))

    url = server_url or env.get(ENV_SERVER_URL) or raw_profile.get("serverUrl")
    token = api_token or env.get(ENV_API_TOKEN) or raw_profile.get("apiToken") or ""
    if not url:
        raise ConfigError(
            f"No server URL: set profiles.{name}.serverUrl in {cfg_path}, "
            f"${ENV_SERVER_URL}, or pass --server-url"
        )

    url = str(url).rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ConfigError(f"Server URL must start with http:// or https:// (got {url!r})")

    try:
        tui = parse_tui_config(_coerce_dict(data.get("tui")))
    except ValidationError as e:
        raise ConfigError(str(e)) from e

    return Config(
        profile=Profile(name=name, server_url=url, api_token=str(token)),
        tui=tui,
        path=cfg_path if cfg_path.exists() else None,
    )
