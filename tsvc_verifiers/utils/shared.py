"""Shared helpers: root logging setup and dotenv loading."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import dotenv_values
from rich.logging import RichHandler

_LOGGING_INITIALIZED = False


def setup_logging(level: str) -> None:
    handler = RichHandler(show_path=False, rich_tracebacks=True, markup=False)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def ensure_root_logging(level: str) -> None:
    """Configure root logging once while allowing level updates."""
    global _LOGGING_INITIALIZED
    root_logger = logging.getLogger()
    if not _LOGGING_INITIALIZED:
        setup_logging(level)
        _LOGGING_INITIALIZED = True
    else:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)


def load_env_file(path: Path | None) -> dict[str, str]:
    """Read a dotenv file into a plain mapping, dropping keys without values."""
    if path is None:
        return {}
    env_path = Path(path).expanduser()
    if not env_path.exists():
        raise FileNotFoundError(f"env_file not found: {env_path}")
    values = dotenv_values(env_path)
    return {key: value for key, value in values.items() if value is not None}


__all__ = ["ensure_root_logging", "load_env_file", "setup_logging"]
