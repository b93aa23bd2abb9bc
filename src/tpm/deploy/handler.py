# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/handler.py

from __future__ import annotations

import logging
import os
import shlex
import threading
from typing import Any, Dict, List, Optional, Sequence, Type

from tpm.config.keys import (
    CONNECTOR_IS_RUNNING,
    DEPLOYMENT_CONFIGURATION_KEY,
    DEPLOYMENT_HOST,
    HOME_DIRECTORY,
    HOST,
    HOSTS,
    MANAGER_IS_RUNNING,
    REPLICATOR_IS_RUNNING,
    TEMP_DIRECTORY,
    USERID,
)
from tpm.config.paths import (
    connector_pid_file,
    home_directory,
    manager_pid_file,
    replicator_pid_file,
    temp_directory,
)
from tpm.config.properties import Properties
from tpm.messages.collector import MessageCollector
from tpm.messages.errors import Confirmer, RemoteCommandError, ResultDecodeError
from tpm.messages.result import RemoteResult
from tpm.observers.dispatcher import EventBus
from tpm.remote.single_host import (
    DEPLOY_SINGLE_CONFIG,
    LOAD_CONFIG,
    RemoteInvoker,
    remote_additional_path,
    remote_directory,
)
from tpm.remote.transport import LocalRunner, Transport, is_local, whoami
from tpm.topology.strategies import build_topologies

from .core import DeploymentObject
from .steps import StepKind, StepProvider

log = logging.getLogger("tpm")


def load_host_config(config: Properties) -> Properties:
    """
    Complete a host configuration on the host itself: fill in defaults
    and record which services are currently running there.
    """
    host = config.get_nested([DEPLOYMENT_HOST])
    config.set_default([HOSTS, host, HOST], host)
    config.set_default([HOSTS, host, USERID], whoami())
    config.set_default([HOSTS, host, HOME_DIRECTORY], home_directory(config))
    config.set_default([HOSTS, host, TEMP_DIRECTORY], temp_directory(config))

    config.set([HOSTS, host, REPLICATOR_IS_RUNNING], os.path.exists(replicator_pid_file(config)))
    config.set([HOSTS, host, MANAGER_IS_RUNNING], os.path.exists(manager_pid_file(config)))
    config.set([HOSTS, host, CONNECTOR_IS_RUNNING], os.path.exists(connector_pid_file(config)))
    return config


class DeploymentHandler:
    """
    Moves one host through prepare, deployment and cleanup. Local hosts
    run their deployment object in process; remote hosts get their
    configuration copied over and run ``tpm deploy-single-config`` for
    each group.
    """

    def __init__(
        self,
        command_name: str,
        providers: Sequence[Type[StepProvider]],
        *,
        transport: Optional[Transport] = None,
        runner: Optional[LocalRunner] = None,
        forced: bool = False,
        confirmer: Optional[Confirmer] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.command_name = command_name
        self.providers = list(providers)
        self.transport = transport
        self.runner = runner or LocalRunner()
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.messages = MessageCollector(forced=forced, confirmer=confirmer)
        self.additional_properties: Optional[Dict[str, Any]] = None
        self._objects: Dict[str, DeploymentObject] = {}
        self._lock = threading.Lock()

    def _is_local(self, config: Properties) -> bool:
        return self.transport is None or is_local(config)

    @property
    def invoker(self) -> RemoteInvoker:
        return RemoteInvoker(self.transport)

    def reset(self) -> None:
        self.messages.reset()

    def get_remote_result(self) -> RemoteResult:
        return self.messages.get_remote_result()

    def _record_remote(self, config: Properties, label: str, call) -> None:
        host = config.get_nested([DEPLOYMENT_HOST])
        try:
            result = call()
        except ResultDecodeError as exc:
            log.debug(f"{host} >> {exc}")
            self.messages.error(f"Unable to read the {label} result", host)
            return
        except Exception as exc:
            self.messages.exception(exc, host)
            return
        if result is not None:
            self.messages.add_remote_result(result)

    # ------------------------------------------------------------------
    # phases
    # ------------------------------------------------------------------
    def prepare(self, configs: List[Properties]) -> None:
        for config in configs:
            key = config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])
            if self._is_local(config):
                loaded = load_host_config(config.dup())
                self.messages.output_property(key, "props", loaded.props)
                continue

            def call(config=config):
                self.invoker.upload_profile(config)
                return self.invoker.invoke(config, LOAD_CONFIG, command_name=self.command_name)

            self._record_remote(config, "configuration load", call)

    def set_additional_properties(self, configs: List[Properties], props: Optional[Dict[str, Any]]) -> None:
        self.additional_properties = props
        if props is None:
            return
        for config in configs:
            if self._is_local(config):
                continue

            def call(config=config):
                self.invoker.upload_properties(config, props, remote_additional_path(config))

            self._record_remote(config, "additional properties", call)

    def prepare_deploy_config(self, configs: List[Properties]) -> None:
        for config in configs:
            if self._is_local(config):
                try:
                    self.get_deployment_object(config)
                except Exception as exc:
                    self.messages.exception(exc, config.get_nested([DEPLOYMENT_HOST]))
                continue
            self._record_remote(config, "deployment configuration", lambda config=config: self.invoker.upload_profile(config))

    def get_deployment_object(self, config: Properties) -> DeploymentObject:
        key = config.get_nested([DEPLOYMENT_CONFIGURATION_KEY]) or config.get_nested([DEPLOYMENT_HOST])
        with self._lock:
            obj = self._objects.get(key)
            if obj is None:
                expanded = config.dup()
                build_topologies(expanded)
                obj = DeploymentObject(
                    expanded,
                    self.providers,
                    command_name=self.command_name,
                    runner=self.runner,
                    messages=self.messages,
                    bus=self.bus,
                    run_id=self.run_id,
                )
                self._objects[key] = obj
        return obj

    def deploy_config_group(self, config: Properties, kind: StepKind, group_id: Optional[int]) -> None:
        if self._is_local(config):
            try:
                self.get_deployment_object(config).run(kind, group_id, self.additional_properties)
            except Exception as exc:
                self.messages.exception(exc, config.get_nested([DEPLOYMENT_HOST]))
            return

        def call():
            return self.invoker.invoke(
                config,
                DEPLOY_SINGLE_CONFIG,
                command_name=self.command_name,
                kind=kind.value,
                group_id=group_id,
                additional_properties=(
                    remote_additional_path(config) if self.additional_properties is not None else None
                ),
            )

        self._record_remote(config, "deployment", call)

    def cleanup(self, configs: List[Properties]) -> None:
        for config in configs:
            if self._is_local(config):
                continue
            try:
                self.invoker.run(config, f"rm -rf {shlex.quote(remote_directory(config))}")
            except RemoteCommandError as exc:
                log.debug(f"{config.get_nested([DEPLOYMENT_HOST])} >> cleanup failed: {exc}")
