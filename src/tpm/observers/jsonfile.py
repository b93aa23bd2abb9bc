# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/observers/jsonfile.py

from __future__ import annotations

import json
import threading
from pathlib import Path

from tpm.utils.serialize import to_jsonable

from .events import BaseEvent


class JsonFileObserver:
    """Appends every event as one JSON line next to the run's log file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        line = json.dumps({"type": event.__class__.__name__, **to_jsonable(event.dict())}, sort_keys=True)
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
