# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/observers/dispatcher.py

import logging
import threading
from typing import List, Optional, Protocol

from .events import BaseEvent

log = logging.getLogger("tpm")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    """Fans lifecycle events out to observers. Emitted from worker threads."""

    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers: List[Observer] = list(observers or [])
        self._lock = threading.Lock()

    def subscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for ob in observers:
            try:
                ob.notify(event)
            except Exception as exc:
                log.debug(f"observer {ob.__class__.__name__} failed on {event.__class__.__name__}: {exc}")
