# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/observers/logger.py

from __future__ import annotations

import logging

from .events import BaseEvent, GroupFinished, HostStepFailed, RunSummary, StageFinished

_SKIP = ("ts", "run_id", "command", "host")


def event_level(event: BaseEvent) -> int:
    """Failures surface at WARNING or above; the rest only reaches the trace file."""
    if isinstance(event, HostStepFailed):
        return logging.ERROR
    if isinstance(event, (StageFinished, GroupFinished, RunSummary)) and not event.ok:
        return logging.WARNING
    return logging.DEBUG


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        prefix = f"{d['host']} >> " if d.get("host") else ""
        fields = ", ".join(f"{k}={v}" for k, v in d.items() if k not in _SKIP)
        self.logger.log(event_level(event), f"{prefix}[EVENT] {event.__class__.__name__}: {fields}")
