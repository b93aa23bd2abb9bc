# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str             # ISO timestamp
    run_id: str         # correlates all events in a single command invocation
    command: str        # install/update/validate/...
    host: Optional[str] # host alias for host-scoped events

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(command: str, host: Optional[str] = None, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "command": command,
        "host": host,
    }


# ---------------------------------------------------------------------
# Command stages
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StageStarted(BaseEvent):
    stage: str
    hosts: List[str]

@dataclass(frozen=True)
class StageFinished(BaseEvent):
    stage: str
    ok: bool


# ---------------------------------------------------------------------
# Step groups
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class GroupScheduled(BaseEvent):
    kind: str
    group_id: int
    parallelization: str
    hosts: List[str]

@dataclass(frozen=True)
class GroupFinished(BaseEvent):
    kind: str
    group_id: int
    ok: bool


# ---------------------------------------------------------------------
# Steps on one host
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    kind: str
    group_id: int
    step: str

@dataclass(frozen=True)
class StepFinished(BaseEvent):
    kind: str
    group_id: int
    step: str

@dataclass(frozen=True)
class HostStepFailed(BaseEvent):
    kind: str
    group_id: Optional[int]
    step: Optional[str]
    error: str


# ---------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunSummary(BaseEvent):
    ok: bool
    errors: int
    warnings: int
