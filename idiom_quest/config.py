"""Environment-driven configuration.

IDIOM_QUEST_REFERENCE_DB  path to the read-only idiom corpus (SQLite)
IDIOM_QUEST_DATA_DIR      per-user data directory holding progress and counters
IDIOM_QUEST_PROGRESS_DB   explicit progress file, overrides the data directory
DEBUG                     "1" turns on debug logging in the scripts and web app
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

PROGRESS_DB_NAME = "user_data.sqlite"
COUNTERS_NAME = "counters.json"


def reference_path() -> Path:
    return Path(os.environ.get("IDIOM_QUEST_REFERENCE_DB", "data/idioms.sqlite"))


def data_dir() -> Path:
    configured = os.environ.get("IDIOM_QUEST_DATA_DIR")
    if configured:
        return Path(configured)
    return Path.home() / ".idiom_quest"


def progress_path() -> Path:
    configured = os.environ.get("IDIOM_QUEST_PROGRESS_DB")
    if configured:
        return Path(configured)
    return data_dir() / PROGRESS_DB_NAME


def counters_path(progress: Optional[Path] = None) -> Path:
    """Counters live beside the progress file they describe."""
    return (progress or progress_path()).with_name(COUNTERS_NAME)


def configure_logging(debug: Optional[bool] = None) -> None:
    if debug is None:
        debug = DEBUG_MODE
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
