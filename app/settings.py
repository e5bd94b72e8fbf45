from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

APP_DIR = Path(__file__).resolve().parent
DEFAULT_POLL_SECONDS = 45


@dataclass(frozen=True)
class BoardSettings:
    data_dir: Path
    database_url: str
    viewer: Optional[str]
    actor: str
    poll_seconds: int
    log_level: str
    log_file: Path
    log_max_bytes: int
    log_backup_count: int


def _parse_int(name: str, default: int, errors: list) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default


def _create_settings() -> BoardSettings:
    errors: list = []
    data_dir = Path(os.getenv("SHIFT_BOARD_DATA_DIR", str(APP_DIR / "data")))
    database_url = os.getenv(
        "SHIFT_BOARD_DATABASE_URL",
        f"sqlite:///{(data_dir / 'schedule.db').as_posix()}",
    )
    viewer = (os.getenv("SHIFT_BOARD_VIEWER") or "").strip() or None
    actor = (os.getenv("SHIFT_BOARD_ACTOR") or "").strip() or viewer or "board"
    poll_seconds = _parse_int("SHIFT_BOARD_POLL_SECONDS", DEFAULT_POLL_SECONDS, errors)
    log_level = os.getenv("SHIFT_BOARD_LOG_LEVEL", "INFO").upper()
    log_file = Path(os.getenv("SHIFT_BOARD_LOG_FILE", str(data_dir / "logs" / "board.log")))
    log_max_bytes = _parse_int("SHIFT_BOARD_LOG_MAX_BYTES", 5 * 1024 * 1024, errors)
    log_backup_count = _parse_int("SHIFT_BOARD_LOG_BACKUP_COUNT", 3, errors)

    if poll_seconds <= 0:
        errors.append("SHIFT_BOARD_POLL_SECONDS must be positive")
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        errors.append(f"SHIFT_BOARD_LOG_LEVEL is not a logging level: {log_level}")
    if log_backup_count < 0:
        errors.append("SHIFT_BOARD_LOG_BACKUP_COUNT must be zero or more")
    if errors:
        raise ValueError("Invalid settings:\n" + "\n".join(f"- {error}" for error in errors))

    return BoardSettings(
        data_dir=data_dir,
        database_url=database_url,
        viewer=viewer,
        actor=actor,
        poll_seconds=poll_seconds,
        log_level=log_level,
        log_file=log_file,
        log_max_bytes=log_max_bytes,
        log_backup_count=log_backup_count,
    )


_settings: Optional[BoardSettings] = None


def get_settings() -> BoardSettings:
    global _settings
    if _settings is None:
        _settings = _create_settings()
    return _settings


def reload_settings() -> BoardSettings:
    global _settings
    _settings = None
    return get_settings()
