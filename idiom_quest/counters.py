"""Small durable key/value file for cached counts (e.g. the catalog size)."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class CounterStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, int]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            # A cache only: reconciliation writes it again on the next launch.
            logger.warning("Ignoring unreadable counter file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring counter file %s: expected an object", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, int)}

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            return self._load().get(key)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return self._load()

    def set(self, key: str, value: int) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, int]) -> None:
        """Write several counters in one atomic replace of the file."""
        with self._lock:
            data = self._load()
            data.update((key, int(value)) for key, value in values.items())
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".counters-", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
