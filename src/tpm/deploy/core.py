# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/core.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.messages.collector import MessageCollector
from tpm.messages.result import RemoteResult
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import HostStepFailed, StepFinished, StepStarted, new_ctx
from tpm.remote.transport import LocalRunner

from .steps import BoundStep, DeploymentStep, StepKind, StepProvider

log = logging.getLogger("tpm")


class DeploymentObject:
    """
    The steps of one host, merged from every selected step-provider and
    grouped by kind and group id. Always runs on the host it describes.
    """

    def __init__(
        self,
        config: Properties,
        providers: Sequence[Type[StepProvider]],
        *,
        command_name: str = "",
        runner: Optional[LocalRunner] = None,
        messages: Optional[MessageCollector] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.config = config
        self.command_name = command_name
        self.runner = runner or LocalRunner()
        self.messages = messages or MessageCollector()
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.additional_properties = Properties()
        self.providers = [cls(self) for cls in providers]
        self.methods: Dict[StepKind, Dict[int, List[BoundStep]]] = {}
        self.prepare()

    @property
    def host(self) -> Optional[str]:
        return self.config.get_nested([DEPLOYMENT_HOST])

    def prepare(self) -> None:
        self.methods = {kind: {} for kind in StepKind}
        for provider in self.providers:
            for bound in provider.bound_steps():
                self.methods[bound.step.kind].setdefault(bound.step.group_id, []).append(bound)
        for groups in self.methods.values():
            for steps in groups.values():
                steps.sort(key=lambda b: b.step.weight)

    # ------------------------------------------------------------------
    # plan inspection
    # ------------------------------------------------------------------
    def get_group_ids(self, kind: StepKind) -> List[int]:
        return sorted(self.methods[kind])

    def get_steps(self, kind: StepKind, group_id: Optional[int] = None) -> List[DeploymentStep]:
        groups = self.methods[kind]
        ids = self.get_group_ids(kind) if group_id is None else [group_id]
        return [b.step for gid in ids for b in groups.get(gid, [])]

    def additional_property(self, key: str, default: Any = None) -> Any:
        host_key = self.config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])
        value = self.additional_properties.get_nested([host_key, key])
        return default if value is None else value

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def run(
        self,
        kind: StepKind,
        group_id: Optional[int] = None,
        additional_properties: Optional[Dict[str, Any]] = None,
    ) -> RemoteResult:
        """
        Run one group (or every group in order when *group_id* is None).
        A step that raises ends the run for this host; the failure is
        recorded against the host and returned with the result.
        """
        self.additional_properties = Properties(dict(additional_properties or {}))

        if group_id is None:
            group_ids = self.get_group_ids(kind)
        else:
            group_ids = [group_id] if group_id in self.methods[kind] else []

        current: Optional[BoundStep] = None
        current_group: Optional[int] = None
        try:
            for gid in group_ids:
                current_group = gid
                for bound in self.methods[kind][gid]:
                    current = bound
                    self._run_step(kind, gid, bound)
                current = None
        except Exception as exc:
            self.messages.exception(exc, self.host)
            self.bus.emit(
                HostStepFailed(
                    **new_ctx(self.command_name, self.host, self.run_id),
                    kind=kind.value,
                    group_id=current_group,
                    step=current.step.method_name if current else None,
                    error=str(exc),
                )
            )
        return self.messages.get_remote_result()

    def _run_step(self, kind: StepKind, group_id: int, bound: BoundStep) -> None:
        name = bound.step.method_name
        log.debug(f"{self.host} >> {bound.provider}.{name} (group {group_id}, weight {bound.step.weight})")
        self.bus.emit(
            StepStarted(**new_ctx(self.command_name, self.host, self.run_id), kind=kind.value, group_id=group_id, step=name)
        )
        bound()
        self.bus.emit(
            StepFinished(**new_ctx(self.command_name, self.host, self.run_id), kind=kind.value, group_id=group_id, step=name)
        )
