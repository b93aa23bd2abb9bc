# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/validation/handler.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.messages.collector import MessageCollector
from tpm.messages.errors import Confirmer, RemoteWarning, ResultDecodeError, ValidationError
from tpm.messages.result import RemoteResult
from tpm.remote.single_host import (
    VALIDATE_COMMIT_CONFIG,
    VALIDATE_SINGLE_CONFIG,
    RemoteInvoker,
)
from tpm.remote.transport import LocalRunner, Transport, is_local
from tpm.topology.base import TopologyError
from tpm.topology.strategies import build_topologies

from .checks import CheckContext, CheckPhase, SkipPolicy, ValidationCheck

log = logging.getLogger("tpm")


class ValidationHandler:
    """
    Runs the checks of one phase against host configurations. Hosts that
    are this machine (and owned by the current user) are checked in
    process, other hosts re-run tpm over the transport and send back
    their result.
    """

    def __init__(
        self,
        command_name: str,
        checks: Sequence[Type[ValidationCheck]],
        *,
        skip_policy: Optional[SkipPolicy] = None,
        transport: Optional[Transport] = None,
        runner: Optional[LocalRunner] = None,
        forced: bool = False,
        confirmer: Optional[Confirmer] = None,
    ):
        self.command_name = command_name
        self.checks = list(checks)
        self.skip_policy = skip_policy or SkipPolicy()
        self.transport = transport
        self.runner = runner or LocalRunner()
        self.messages = MessageCollector(forced=forced, confirmer=confirmer)

    def checks_for(self, phase: CheckPhase) -> List[Type[ValidationCheck]]:
        return [c for c in self.checks if c.phase is phase]

    def get_remote_result(self) -> RemoteResult:
        return self.messages.get_remote_result()

    def _is_local(self, config: Properties) -> bool:
        return self.transport is None or is_local(config)

    # ------------------------------------------------------------------
    # check execution
    # ------------------------------------------------------------------
    def run_checks(
        self,
        config: Properties,
        phase: CheckPhase,
        configs: Optional[List[Properties]] = None,
        results: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        """
        Run every check of *phase*. A failing check marked
        ``fatal_on_error`` stops the rest of the phase for this host.
        """
        context = CheckContext(
            runner=self.runner,
            transport=self.transport,
            configs=list(configs or []),
            results=dict(results or {}),
        )
        host_config = None if configs is not None else config

        for klass in self.checks_for(phase):
            name = klass.name()
            if self.skip_policy.is_skipped(name, host_config):
                log.debug(f"{config.get_nested([DEPLOYMENT_HOST])} >> skipping {name}")
                continue

            check = klass(config, context)
            if not check.enabled():
                continue

            check.run()
            for err in check.errors:
                if isinstance(err, RemoteWarning) and self.skip_policy.is_warning_skipped(name, host_config):
                    continue
                self.messages.add_error(err)
            for host_key, props in check.output.items():
                for key, value in props.items():
                    self.messages.output_property(host_key, key, value)

            if check.fatal_on_error and not check.is_valid():
                break

    def _invoke_remote(
        self, config: Properties, subcommand: str, label: str, *, upload: bool = False
    ) -> None:
        host = config.get_nested([DEPLOYMENT_HOST])
        invoker = RemoteInvoker(self.transport)
        try:
            if upload:
                invoker.upload_profile(config)
            result = invoker.invoke(
                config,
                subcommand,
                command_name=self.command_name,
                skip_checks=sorted(self.skip_policy.skipped),
                enable_checks=sorted(self.skip_policy.enabled),
                skip_validation_warnings=sorted(self.skip_policy.skipped_warnings),
            )
        except ResultDecodeError as exc:
            log.debug(f"{host} >> {exc}")
            self.messages.error(f"Unable to read the {label} result", host)
            return
        except Exception as exc:
            self.messages.exception(exc, host)
            return
        self.messages.add_remote_result(result)

    # ------------------------------------------------------------------
    # phases
    # ------------------------------------------------------------------
    def prevalidate(self, configs: List[Properties]) -> None:
        for config in configs:
            self.run_checks(config, CheckPhase.LOCAL)

    def validate(self, configs: List[Properties]) -> None:
        for config in configs:
            if self._is_local(config):
                self.validate_config(config)
            else:
                self._invoke_remote(config, VALIDATE_SINGLE_CONFIG, "validation", upload=True)

    def _expanded(self, config: Properties) -> Optional[Properties]:
        """A copy of *config* with its data services built for this host."""
        expanded = config.dup()
        try:
            build_topologies(expanded)
        except TopologyError as exc:
            self.messages.add_error(
                ValidationError(str(exc), config.get_nested([DEPLOYMENT_HOST]), "TopologyResolver")
            )
            return None
        return expanded

    def validate_config(self, config: Properties) -> None:
        expanded = self._expanded(config)
        if expanded is not None:
            self.run_checks(expanded, CheckPhase.DEPLOYMENT)

    def validate_commit(self, configs: List[Properties]) -> None:
        for config in configs:
            self.messages.clear_output_properties(config.get_nested([DEPLOYMENT_CONFIGURATION_KEY]))
            if self._is_local(config):
                self.validate_commit_config(config)
            else:
                self._invoke_remote(config, VALIDATE_COMMIT_CONFIG, "commit validation")

    def validate_commit_config(self, config: Properties) -> None:
        expanded = self._expanded(config)
        if expanded is not None:
            self.run_checks(expanded, CheckPhase.COMMIT)

    def post_validate(self, configs: List[Properties]) -> None:
        self.run_checks(Properties(), CheckPhase.POST_VALIDATE, configs)

    def post_validate_commit(
        self,
        configs: List[Properties],
        results: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.run_checks(Properties(), CheckPhase.POST_VALIDATE_COMMIT, configs, results)
