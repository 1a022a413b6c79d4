from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from .log import parse_module_levels


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


@dataclass
class Settings:
    # Overlay store
    overlay_key: str = "customTags"
    overlay_db: str = str(Path.home() / ".tagmarks" / "overlay.sqlite")
    write_back_on_remove: bool = False

    # Bookmark sources (one of them is used by the CLI)
    places_db: str = ""
    bookmarks_html: str = ""
    busy_timeout_ms: int = 5000

    # Search
    default_order: str = "title"  # title | date | url

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False
    log_levels: Dict[str, str] = field(default_factory=dict)  # logger name -> level

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.overlay_key = _env_str("TAGMARKS_OVERLAY_KEY", s.overlay_key)
        s.overlay_db = _env_str("TAGMARKS_OVERLAY_DB", s.overlay_db)
        s.write_back_on_remove = _env_bool("TAGMARKS_WRITE_BACK_ON_REMOVE", s.write_back_on_remove)

        s.places_db = _env_str("TAGMARKS_PLACES_DB", s.places_db)
        s.bookmarks_html = _env_str("TAGMARKS_BOOKMARKS_HTML", s.bookmarks_html)
        s.busy_timeout_ms = _env_int("TAGMARKS_BUSY_TIMEOUT_MS", s.busy_timeout_ms)

        s.default_order = _env_str("TAGMARKS_DEFAULT_ORDER", s.default_order)

        s.log_level = _env_str("TAGMARKS_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("TAGMARKS_NO_COLOR", s.no_color)
        levels = _env_str("TAGMARKS_LOG_LEVELS", "")
        if levels:
            s.log_levels = parse_module_levels(levels)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        if isinstance(s.log_levels, str):
            s.log_levels = parse_module_levels(s.log_levels)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
