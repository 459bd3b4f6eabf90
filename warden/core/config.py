from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .errors import ConfigurationError


class WardenSettings(BaseModel):
    """
    Out-of-process configuration for a unit.

    user_page_end is supplied once at first deployment and must stay identical
    for the lifetime of the persisted store.
    """

    user_page_end: Optional[int] = Field(default=None, ge=1)
    audit_path: Optional[Path] = None
    store_path: Optional[Path] = None


def _env_int(key: str) -> Optional[int]:
    raw = (os.getenv(key) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


def _env_path(key: str) -> Optional[Path]:
    raw = (os.getenv(key) or "").strip()
    return Path(raw) if raw else None


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    # tolerate a top-level "warden:" section
    section = raw.get("warden", raw)
    return section if isinstance(section, dict) else {}


def load_settings(config_path: Optional[Path] = None) -> WardenSettings:
    """
    Resolve settings from an optional YAML file (WARDEN_CONFIG) and env.

    Env vars win over the file:
      WARDEN_USER_PAGE_END
      WARDEN_AUDIT_PATH
      WARDEN_STORE_PATH
    """
    data: Dict[str, Any] = {}

    path = config_path or _env_path("WARDEN_CONFIG")
    if path is not None:
        data.update(_load_yaml(path))

    user_page_end = _env_int("WARDEN_USER_PAGE_END")
    if user_page_end is not None:
        data["user_page_end"] = user_page_end

    audit_path = _env_path("WARDEN_AUDIT_PATH")
    if audit_path is not None:
        data["audit_path"] = audit_path

    store_path = _env_path("WARDEN_STORE_PATH")
    if store_path is not None:
        data["store_path"] = store_path

    try:
        return WardenSettings(**data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid warden settings: {e}") from e
