"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < explicit overrides
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    model: str = ""
    api_key: str = ""
    # Empty means the provider's default variable.
    api_key_env: str = ""
    base_url: str = ""
    temperature: float | None = None
    max_tokens: int = 0
    timeout_seconds: float = 120.0
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ChatConfig:
    max_tool_rounds: int = 10
    tool_timeout_seconds: float | None = None
    # 0=error, 1=warning, 2=info, 3=debug
    log_level: int = 1


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class PolychatConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise KeyError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "POLYCHAT_MODEL":           ("llm.model", str),
    "POLYCHAT_API_KEY_ENV":     ("llm.api_key_env", str),
    "POLYCHAT_BASE_URL":        ("llm.base_url", str),
    "POLYCHAT_TEMPERATURE":     ("llm.temperature", float),
    "POLYCHAT_MAX_TOKENS":      ("llm.max_tokens", int),
    "POLYCHAT_TIMEOUT":         ("llm.timeout_seconds", float),
    "POLYCHAT_MAX_TOOL_ROUNDS": ("chat.max_tool_rounds", int),
    "POLYCHAT_TOOL_TIMEOUT":    ("chat.tool_timeout_seconds", float),
    "POLYCHAT_DEBUG":           ("chat.log_level", int),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> PolychatConfig:
    """
    Build a PolychatConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  overrides

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    overrides : dict of dotpath -> value overrides (e.g. ``{"llm.model": ...}``)
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    cfg = PolychatConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        chat=_build_section(ChatConfig, raw.get("chat", {})),
    )

    # --- 2. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None and val != "":
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 3. Explicit overrides ---
    if overrides:
        for dotpath, value in overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_DEBUG_LEVELS = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
}


def log_level_for(debug: int) -> int:
    """Map a 0-3 debug setting onto a ``logging`` level; out-of-range clamps."""
    return _DEBUG_LEVELS[max(0, min(3, debug))]


def configure_logging(debug: int | None = None) -> logging.Logger:
    """
    Set the ``polychat`` logger level from *debug* or ``POLYCHAT_DEBUG``.

    Handlers are left to the application.
    """
    if debug is None:
        try:
            debug = int(os.environ.get("POLYCHAT_DEBUG", "1"))
        except ValueError:
            debug = 1
    root = logging.getLogger("polychat")
    root.setLevel(log_level_for(debug))
    return root
