"""JSON file storage for compression history."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any

from shrink.utils import xdg_data_home

log = logging.getLogger(__name__)

_DATA_DIR = xdg_data_home() / "shrink"

HISTORY_FILE = _DATA_DIR / "history.json"


def _ensure_data_dir() -> None:
    """Create the data directory if it doesn't exist."""
    _DATA_DIR.mkdir(parents=True, exist_ok=True)


def load_history() -> dict[str, Any]:
    """Load the history file, returning an empty structure if missing."""
    if not HISTORY_FILE.exists():
        return {"sessions": []}
    try:
        with open(HISTORY_FILE, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        log.exception("Failed to load history file: %s", HISTORY_FILE)
        return {"sessions": []}
    if not isinstance(data, dict) or not isinstance(data.get("sessions"), list):
        log.warning("Ignoring malformed history file: %s", HISTORY_FILE)
        return {"sessions": []}
    return data


def save_history(data: dict[str, Any]) -> None:
    """Write the history data to disk.

    The new content goes to a temp file beside the history file and is
    renamed over it, so a crash leaves either the old or the new history.
    """
    try:
        _ensure_data_dir()
        fd, tmp_name = tempfile.mkstemp(prefix=".history-", suffix=".tmp", dir=_DATA_DIR)
    except OSError:
        log.exception("Failed to save history file: %s", HISTORY_FILE)
        return
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, HISTORY_FILE)
    except OSError:
        log.exception("Failed to save history file: %s", HISTORY_FILE)
    finally:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
