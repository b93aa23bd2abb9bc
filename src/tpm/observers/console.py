# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/observers/console.py

from __future__ import annotations

import typer

from .events import (
    BaseEvent,
    GroupFinished,
    GroupScheduled,
    HostStepFailed,
    RunSummary,
    StageFinished,
    StageStarted,
)


def describe(event: BaseEvent) -> str:
    if isinstance(event, StageStarted):
        return f"{event.stage} started on {', '.join(event.hosts) or 'no hosts'}"
    if isinstance(event, StageFinished):
        return f"{event.stage} {'finished' if event.ok else 'FAILED'}"
    if isinstance(event, GroupScheduled):
        return f"{event.kind} group {event.group_id} ({event.parallelization}) on {len(event.hosts)} hosts"
    if isinstance(event, GroupFinished):
        return f"{event.kind} group {event.group_id} {'finished' if event.ok else 'FAILED'}"
    if isinstance(event, HostStepFailed):
        return f"{event.host} >> {event.step or 'step'} in group {event.group_id} failed: {event.error}"
    if isinstance(event, RunSummary):
        status = "succeeded" if event.ok else "failed"
        return f"{event.command} {status} with {event.errors} errors and {event.warnings} warnings"
    step = getattr(event, "step", None)
    return f"{event.host} >> {event.__class__.__name__} {step or ''}".rstrip()


class ConsoleObserver:
    """Prints one line per lifecycle event on stderr; failures in red."""

    def notify(self, event: BaseEvent) -> None:
        failed = isinstance(event, HostStepFailed) or getattr(event, "ok", True) is False
        typer.secho(
            f"[{event.ts}] {describe(event)}",
            fg=typer.colors.RED if failed else None,
            err=True,
        )
