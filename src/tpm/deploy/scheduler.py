# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/scheduler.py

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_DATASERVICE, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.messages.collector import MessageCollector
from tpm.messages.result import RemoteResult
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import GroupFinished, GroupScheduled, new_ctx

from .handler import DeploymentHandler
from .steps import DeploymentStep, Parallelization, StepKind

log = logging.getLogger("tpm")


# ---------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------
def group_ids(step_lists: Sequence[Sequence[DeploymentStep]]) -> List[int]:
    """Distinct group ids across every host, ascending."""
    return sorted({s.group_id for steps in step_lists for s in steps})


def group_parallelization(
    step_lists: Sequence[Sequence[DeploymentStep]], group_id: int
) -> Parallelization:
    """
    The strictest parallelization declared by any step of the group on
    any host. One host asking for NONE serializes the group everywhere.
    """
    values = [s.parallelization for steps in step_lists for s in steps if s.group_id == group_id]
    return min(values, default=Parallelization.BY_HOST)


def _host(config: Properties) -> str:
    return config.get_nested([DEPLOYMENT_HOST]) or ""


def _key(config: Properties) -> str:
    return config.get_nested([DEPLOYMENT_CONFIGURATION_KEY]) or _host(config)


class DeploymentScheduler:
    """
    Runs handler phases across host configurations and drives the
    group-by-group deployment plan, merging every result into the
    command's collector.
    """

    def __init__(
        self,
        messages: MessageCollector,
        *,
        command_name: str = "",
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        max_workers: Optional[int] = None,
    ):
        self.messages = messages
        self.command_name = command_name
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.max_workers = max_workers

    def _pool(self, size: int) -> ThreadPoolExecutor:
        workers = max(1, size if self.max_workers is None else min(size, self.max_workers))
        return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tpm")

    # ------------------------------------------------------------------
    # per-host handler phases
    # ------------------------------------------------------------------
    def parallel_handle(
        self,
        configs: List[Properties],
        factory: Callable[[], Any],
        method: str,
        *args: Any,
    ) -> bool:
        """
        Give every configuration its own handler, call ``method([config])``
        on it in a worker and merge the results once all workers finish.
        """

        def work(config: Properties) -> RemoteResult:
            handler = factory()
            try:
                getattr(handler, method)([config], *args)
            except Exception as exc:
                handler.messages.exception(exc, _host(config))
            return handler.get_remote_result()

        with self._pool(len(configs)) as pool:
            futures = {pool.submit(work, config): config for config in configs}
            for fut in as_completed(futures):
                self.messages.add_remote_result(fut.result())

        return self.messages.is_valid()

    # ------------------------------------------------------------------
    # deployment plan
    # ------------------------------------------------------------------
    def parallel_deploy(
        self,
        configs: List[Properties],
        factory: Callable[[], DeploymentHandler],
        kind: StepKind,
        additional_properties: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Run the *kind* steps of every host group by group. Returns False
        as soon as a group leaves a fatal error behind; later groups are
        never started and finished groups are not undone.
        """
        handlers = {_key(config): factory() for config in configs}

        def per_host(method: str, *args: Any) -> None:
            def work(config: Properties) -> RemoteResult:
                handler = handlers[_key(config)]
                handler.reset()
                try:
                    getattr(handler, method)([config], *args)
                except Exception as exc:
                    handler.messages.exception(exc, _host(config))
                return handler.get_remote_result()

            with self._pool(len(configs)) as pool:
                for fut in as_completed([pool.submit(work, c) for c in configs]):
                    self.messages.add_remote_result(fut.result())

        if kind is StepKind.DEPLOYMENT:
            per_host("prepare_deploy_config")
        if additional_properties is not None:
            per_host("set_additional_properties", additional_properties)
        if not self.messages.is_valid():
            return False

        steps: Dict[str, List[DeploymentStep]] = {}
        for config in configs:
            try:
                steps[_key(config)] = handlers[_key(config)].get_deployment_object(config).get_steps(kind)
            except Exception as exc:
                self.messages.exception(exc, _host(config))
        if not self.messages.is_valid():
            return False

        for group_id in group_ids(list(steps.values())):
            policy = group_parallelization(list(steps.values()), group_id)
            self.bus.emit(
                GroupScheduled(
                    **new_ctx(self.command_name, None, self.run_id),
                    kind=kind.value,
                    group_id=group_id,
                    parallelization=policy.name,
                    hosts=[_host(c) for c in configs],
                )
            )
            log.debug(f"Running {kind.value} group {group_id} ({policy.name})")

            if policy is Parallelization.BY_HOST:
                self._run_by_host(configs, handlers, kind, group_id)
            elif policy is Parallelization.BY_SERVICE:
                self._run_by_service(configs, handlers, steps, kind, group_id)
            else:
                self._run_sequential(configs, handlers, kind, group_id)

            ok = self.messages.is_valid()
            self.bus.emit(
                GroupFinished(
                    **new_ctx(self.command_name, None, self.run_id),
                    kind=kind.value,
                    group_id=group_id,
                    ok=ok,
                )
            )
            if not ok:
                log.error(f"Stopping after {kind.value} group {group_id}")
                return False

        return self.messages.is_valid()

    def _deploy_one(
        self,
        config: Properties,
        handlers: Dict[str, DeploymentHandler],
        kind: StepKind,
        group_id: int,
    ) -> RemoteResult:
        handler = handlers[_key(config)]
        handler.reset()
        try:
            handler.deploy_config_group(config, kind, group_id)
        except Exception as exc:
            handler.messages.exception(exc, _host(config))
        return handler.get_remote_result()

    def _run_by_host(self, configs, handlers, kind, group_id) -> None:
        with self._pool(len(configs)) as pool:
            futures = [pool.submit(self._deploy_one, c, handlers, kind, group_id) for c in configs]
            for fut in as_completed(futures):
                self.messages.add_remote_result(fut.result())

    def _run_by_service(self, configs, handlers, steps, kind, group_id) -> None:
        services: Dict[str, List[Properties]] = {}
        for config in configs:
            services.setdefault(config.get(DEPLOYMENT_DATASERVICE, ""), []).append(config)

        def weight(config: Properties) -> int:
            weights = [s.weight for s in steps.get(_key(config), []) if s.group_id == group_id]
            return min(weights, default=0)

        def work(members: List[Properties]) -> None:
            for config in sorted(members, key=weight):
                self.messages.add_remote_result(self._deploy_one(config, handlers, kind, group_id))

        with self._pool(len(services)) as pool:
            for fut in as_completed([pool.submit(work, m) for m in services.values()]):
                fut.result()

    def _run_sequential(self, configs, handlers, kind, group_id) -> None:
        for config in configs:
            self.messages.add_remote_result(self._deploy_one(config, handlers, kind, group_id))
