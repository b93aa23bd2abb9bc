# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/commands/base.py

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST, HOSTS
from tpm.config.properties import Properties
from tpm.deploy.handler import DeploymentHandler
from tpm.deploy.scheduler import DeploymentScheduler
from tpm.deploy.steps import StepKind
from tpm.messages.collector import MessageCollector
from tpm.messages.errors import Confirmer, RemoteError
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import RunSummary, StageFinished, StageStarted, new_ctx
from tpm.remote.transport import LocalRunner, Transport
from tpm.validation.checks import SkipPolicy, ValidationCheck
from tpm.validation.handler import ValidationHandler

from .registry import CommandDescriptor

log = logging.getLogger("tpm")


@dataclass(frozen=True)
class RunOptions:
    """
    Operator choices for one run. ``skip_validation`` and
    ``skip_deployment`` override the command's own defaults when set.
    """

    forced: bool = False
    skip_validation: Optional[bool] = None
    skip_deployment: Optional[bool] = None
    command_hosts: Tuple[str, ...] = ()
    command_dataservices: Tuple[str, ...] = ()
    skip_checks: Tuple[str, ...] = ()
    enable_checks: Tuple[str, ...] = ()
    skip_warnings: Tuple[str, ...] = ()
    no_connectors: bool = False
    release_name: Optional[str] = None
    max_workers: Optional[int] = None
    from_event: Optional[str] = None
    from_master_backup_event: Optional[str] = None
    confirmed: bool = False


class ConfigureCommand:
    """
    Drives one command run:
    prevalidate -> prepare -> validate -> deploy -> validate_commit -> commit -> cleanup.

    A stage that leaves a fatal error behind ends the run unless it was
    forced. Cleanup always runs.
    """

    def __init__(
        self,
        descriptor: CommandDescriptor,
        config: Properties,
        options: Optional[RunOptions] = None,
        *,
        transport: Optional[Transport] = None,
        runner: Optional[LocalRunner] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        confirmer: Optional[Confirmer] = None,
        checks: Optional[Sequence[Type[ValidationCheck]]] = None,
    ):
        self.descriptor = descriptor
        self.config = config
        self.options = options or RunOptions()
        self.transport = transport
        self.runner = runner or LocalRunner()
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.confirmer = confirmer
        self.checks = list(descriptor.check_classes() if checks is None else checks)
        self.providers = descriptor.provider_classes()

        self.messages = MessageCollector(forced=self.options.forced, confirmer=confirmer)
        self.skip_policy = SkipPolicy.build(
            self.options.skip_checks, self.options.enable_checks, self.options.skip_warnings
        )
        self.scheduler = DeploymentScheduler(
            self.messages,
            command_name=descriptor.name,
            bus=self.bus,
            run_id=run_id,
            max_workers=self.options.max_workers,
        )
        self.release_name = self.options.release_name or (
            "tpm-" + datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        )
        self.deployment_configs: List[Properties] = []
        self.error_history: List[RemoteError] = []
        self.failed_stages: List[str] = []
        self.promotion_settings: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def skip_validation(self) -> bool:
        if self.options.skip_validation is not None:
            return self.options.skip_validation
        return self.descriptor.skip_validation

    @property
    def skip_deployment(self) -> bool:
        if self.options.skip_deployment is not None:
            return self.options.skip_deployment
        return self.descriptor.skip_deployment

    # ------------------------------------------------------------------
    # handler factories
    # ------------------------------------------------------------------
    def validation_handler(self) -> ValidationHandler:
        return ValidationHandler(
            self.name,
            self.checks,
            skip_policy=self.skip_policy,
            transport=self.transport,
            runner=self.runner,
            forced=self.options.forced,
            confirmer=self.confirmer,
        )

    def deployment_handler(self) -> DeploymentHandler:
        return DeploymentHandler(
            self.name,
            self.providers,
            transport=self.transport,
            runner=self.runner,
            forced=self.options.forced,
            confirmer=self.confirmer,
            bus=self.bus,
            run_id=self.run_id,
        )

    # ------------------------------------------------------------------
    # host expansion
    # ------------------------------------------------------------------
    def get_deployment_configuration(self, host_alias: str, config: Properties) -> Optional[Properties]:
        raise NotImplementedError

    def build_deployment_configurations(self) -> List[Properties]:
        """Expand the global tree into one configuration per host, in parallel."""
        aliases = self.config.members(HOSTS)
        if not aliases:
            return []

        def expand(alias: str) -> Optional[Properties]:
            try:
                return self.get_deployment_configuration(alias, self.config.dup())
            except Exception as exc:
                self.messages.exception(exc, alias)
                return None

        with ThreadPoolExecutor(max_workers=len(aliases), thread_name_prefix="tpm-expand") as pool:
            configs = list(pool.map(expand, aliases))
        return [c for c in configs if c is not None]

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------
    def _hosts(self) -> List[str]:
        return [c.get_nested([DEPLOYMENT_HOST]) for c in self.deployment_configs]

    def prevalidate(self) -> bool:
        return self.scheduler.parallel_handle(self.deployment_configs, self.validation_handler, "prevalidate")

    def prepare(self) -> bool:
        ok = self.scheduler.parallel_handle(self.deployment_configs, self.deployment_handler, "prepare")
        for config in self.deployment_configs:
            key = config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])
            props = self.messages.get_output_property(key, "props")
            if props:
                config.props = props
            self.messages.output_properties.delete([key, "props"])
        return ok

    def validate(self) -> bool:
        self.scheduler.parallel_handle(self.deployment_configs, self.validation_handler, "validate")
        handler = self.validation_handler()
        handler.post_validate(self.deployment_configs)
        self.messages.add_remote_result(handler.get_remote_result())
        return self.messages.is_valid()

    def deploy(self) -> bool:
        return self.scheduler.parallel_deploy(
            self.deployment_configs, self.deployment_handler, StepKind.DEPLOYMENT
        )

    def validate_commit(self) -> bool:
        for config in self.deployment_configs:
            self.messages.clear_output_properties(config.get_nested([DEPLOYMENT_CONFIGURATION_KEY]))
        self.scheduler.parallel_handle(self.deployment_configs, self.validation_handler, "validate_commit")
        handler = self.validation_handler()
        handler.post_validate_commit(self.deployment_configs, self.messages.output_properties.to_dict())
        self.messages.add_remote_result(handler.get_remote_result())
        self.promotion_settings = self.messages.output_properties.to_dict()
        return self.messages.is_valid()

    def commit_settings(self) -> Dict[str, Dict[str, Any]]:
        """Additional properties handed to the commitment steps, by host key."""
        return {key: dict(props) for key, props in (self.promotion_settings or {}).items()}

    def commit(self) -> bool:
        return self.scheduler.parallel_deploy(
            self.deployment_configs,
            self.deployment_handler,
            StepKind.COMMITMENT,
            self.commit_settings(),
        )

    def cleanup(self) -> bool:
        return self.scheduler.parallel_handle(self.deployment_configs, self.deployment_handler, "cleanup")

    def stages(self) -> List[Tuple[str, str]]:
        stages: List[Tuple[str, str]] = []
        if not self.skip_validation:
            stages.append(("prevalidate", "Validation failed"))
        stages.append(("prepare", "Unable to prepare all servers"))
        if not self.skip_validation:
            stages.append(("validate", "Validation failed"))
        if not self.skip_deployment:
            stages.append(("deploy", "Deployment failed"))
        if not self.skip_validation:
            stages.append(("validate_commit", "Validation failed"))
        if not self.skip_deployment:
            stages.append(("commit", "Deployment finalization failed"))
        return stages

    def _archive_errors(self) -> None:
        self.error_history.extend(self.messages.errors)
        self.messages.reset_errors()

    def _run_stage(self, stage: str) -> bool:
        """Run one stage. Its outcome only reflects errors raised during it."""
        self._archive_errors()
        self.bus.emit(StageStarted(**new_ctx(self.name, None, self.run_id), stage=stage, hosts=self._hosts()))
        log.info(f"{stage.replace('_', ' ').capitalize()} on {', '.join(self._hosts())}")
        ok = getattr(self, stage)()
        self.bus.emit(StageFinished(**new_ctx(self.name, None, self.run_id), stage=stage, ok=ok))
        return ok

    def option_errors(self) -> List[str]:
        """Problems with the operator's options that make the run pointless."""
        return []

    def run(self) -> bool:
        if self.skip_validation and self.skip_deployment:
            log.info("Validation and deployment are both skipped, nothing to do")
            return True

        for message in self.option_errors():
            self.messages.error(message)
        if not self.messages.is_valid():
            return self._finish(False)

        self.deployment_configs = self.build_deployment_configurations()
        if not self.deployment_configs:
            self.messages.error("Unable to find any host configurations for the data services specified")
            return self._finish(False)

        try:
            for stage, failure in self.stages():
                if self._run_stage(stage):
                    continue
                self.failed_stages.append(stage)
                log.error(failure)
                if stage in ("deploy", "commit"):
                    log.error("Check the status of all hosts before taking action")
                if not self.options.forced:
                    break
                log.warning(f"Continuing after {stage} because the run is forced")
        finally:
            self._run_stage("cleanup")

        return self._finish(not self.failed_stages and self.messages.is_valid())

    def _finish(self, ok: bool) -> bool:
        self._archive_errors()
        self.messages.errors = list(self.error_history)
        if self.messages.errors:
            self.messages.output_errors()
        fatal = self.messages.fatal_errors()
        self.bus.emit(
            RunSummary(
                **new_ctx(self.name, None, self.run_id),
                ok=ok,
                errors=len(fatal),
                warnings=len(self.messages.warnings()),
            )
        )
        if ok:
            log.info("Command successfully completed")
        return ok
