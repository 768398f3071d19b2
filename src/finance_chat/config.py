"""Configuration loading utilities for the finance chat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable FINANCE_CHAT_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``FINANCE_CHAT__`` (e.g., FINANCE_CHAT__LLM__MODEL=llama-3.1-8b-instant).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "FINANCE_CHAT__"

DEFAULTS: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "database": {"path": "data/finance_chat.db"},
    "auth": {
        "secret": None,
        "token_ttl_hours": 24,
        "bcrypt_rounds": 8,
        "google_client_id": None,
    },
    "llm": {
        "base_url": "https://api.groq.com/openai/v1",
        "model": "llama-3.3-70b-versatile",
        "api_key": None,
        "timeout": 30.0,
        "max_retries": 2,
        "backoff": 0.75,
        "max_tokens": 1024,
    },
    "assistant": {
        "system_prompt": None,
        "chat_temperature": 0.7,
    },
}


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix FINANCE_CHAT__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., FINANCE_CHAT__LLM__MODEL -> cfg["llm"]["model"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the finance chat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``FINANCE_CHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Configuration merged over :data:`DEFAULTS` with environment
        overrides applied.
    """
    if path is None:
        path = os.environ.get("FINANCE_CHAT_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_merge(DEFAULTS, loaded))


def signing_secret(cfg: Dict[str, Any]) -> str:
    """Token signing key: config first, then FINANCE_CHAT_SECRET."""
    secret = (cfg.get("auth", {}) or {}).get("secret") or os.environ.get("FINANCE_CHAT_SECRET")
    if not secret:
        raise RuntimeError(
            "No session signing secret configured. Set auth.secret or FINANCE_CHAT_SECRET."
        )
    return str(secret)


def default_api_key(cfg: Dict[str, Any]) -> str | None:
    """Server-side fallback model credential (None when not configured)."""
    key = (cfg.get("llm", {}) or {}).get("api_key") or os.environ.get("GROQ_API_KEY")
    return str(key) if key else None
