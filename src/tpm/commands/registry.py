# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/commands/registry.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type

# step-providers register themselves on import
import tpm.deploy.providers.connector  # noqa: F401
import tpm.deploy.providers.lifecycle  # noqa: F401
import tpm.deploy.providers.release  # noqa: F401
import tpm.deploy.providers.services  # noqa: F401
from tpm.deploy.steps import StepProvider, get_provider
from tpm.validation.checks import ValidationCheck
from tpm.validation.host_checks import get_checks


@dataclass(frozen=True)
class CommandDescriptor:
    name: str
    help: str
    skip_validation: bool = False
    skip_deployment: bool = False
    providers: Tuple[str, ...] = ()
    # None runs the default checks
    checks: Optional[Tuple[str, ...]] = None

    def provider_classes(self) -> List[Type[StepProvider]]:
        return [get_provider(name) for name in self.providers]

    def check_classes(self) -> List[Type[ValidationCheck]]:
        return get_checks(self.checks)


DEPLOY_PROVIDERS = ("release", "connector", "services")

ACCESS_CHECKS = ("SSHLoginCheck", "WriteableTempDirectoryCheck", "RemoteExecutableCheck")

COMMANDS: Dict[str, CommandDescriptor] = {
    d.name: d
    for d in (
        CommandDescriptor("install", "Install and start the configured services", providers=DEPLOY_PROVIDERS),
        CommandDescriptor("update", "Update an installed deployment in place", providers=DEPLOY_PROVIDERS),
        CommandDescriptor("validate", "Validate the configuration without deploying", skip_deployment=True),
        CommandDescriptor(
            "validate-update",
            "Validate an update of an installed deployment without deploying",
            skip_deployment=True,
        ),
        CommandDescriptor(
            "start",
            "Start the installed services, optionally from a given event",
            providers=("start",),
            checks=ACCESS_CHECKS
            + ("CurrentReleaseDirectoryCheck", "RunningServicesCheck", "CommandCoordinatorCheck"),
        ),
        CommandDescriptor(
            "uninstall",
            "Stop the services and remove the installation from each host",
            providers=("uninstall",),
            checks=ACCESS_CHECKS + ("CurrentReleaseDirectoryCheck",),
        ),
    )
}


def get_descriptor(name: str) -> CommandDescriptor:
    try:
        return COMMANDS[name]
    except KeyError:
        raise ValueError(f"unknown command {name!r}; expected one of {', '.join(sorted(COMMANDS))}") from None
