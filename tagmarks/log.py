from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False
    # (logger name, level) pairs, e.g. (("tagmarks.index", "DEBUG"),)
    module_levels: Tuple[Tuple[str, str], ...] = ()


def parse_level(name: str, default: int = logging.INFO) -> int:
    value = getattr(logging, str(name).strip().upper(), None)
    return value if isinstance(value, int) else default


def parse_module_levels(text: str) -> Dict[str, str]:
    """Parse ``"tagmarks.index=DEBUG,tagmarks.places_tree=WARNING"``."""
    out: Dict[str, str] = {}
    for item in text.split(","):
        name, sep, level = item.partition("=")
        if sep and name.strip() and level.strip():
            out[name.strip()] = level.strip().upper()
    return out


def module_levels(levels: Mapping[str, str]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in levels.items()))


def setup_logging(cfg: LogConfig) -> logging.Handler:
    level = parse_level(cfg.level)
    overrides = {name: parse_level(lvl, level) for name, lvl in cfg.module_levels}

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    # Loggers named here filter on their own level; the handler must not
    # drop what they let through.
    for name, lvl in overrides.items():
        logging.getLogger(name).setLevel(lvl)

    if not (cfg.no_color or os.getenv("NO_COLOR") is not None) and sys.stderr.isatty():
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.setLevel(min([level, *overrides.values()]))
    root.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
