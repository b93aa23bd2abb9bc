# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/validation/host_checks.py

from __future__ import annotations

import ipaddress
import re
import shlex
import socket
from typing import Dict, List, Optional, Sequence, Type

from tpm.config.keys import (
    CONNECTOR_IS_RUNNING,
    CONNECTORS,
    DATASERVICE_MEMBERS,
    DATASERVICES,
    DEPLOYMENT_CONFIGURATION_KEY,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    IS_COMMAND_COORDINATOR,
    MANAGER_IS_RUNNING,
    MANAGER_POLICY,
    MANAGERS,
    NO_CONNECTORS,
    REMOTE_EXECUTABLE,
    REPL_SERVICES,
    REPLICATOR_IS_RUNNING,
    RESTART_CONNECTORS,
)
from tpm.config.paths import (
    connector_pid_file,
    current_release_directory,
    home_directory,
    manager_bin,
    manager_pid_file,
    replicator_pid_file,
    temp_directory,
)
from tpm.messages.errors import CommandError
from tpm.remote.transport import host_target, is_local
from tpm.topology.base import is_composite
from tpm.topology.strategies import resolve
from tpm.utils.helpers import as_list

from .checks import CheckPhase, ValidationCheck


def _file_exists(check: ValidationCheck, path: str) -> bool:
    out = check.host_command(f"test -f {shlex.quote(path)} && echo yes || echo no")
    return out.strip() == "yes"


# ---------------------------------------------------------------------
# Local checks, run by the orchestrator before anything is copied
# ---------------------------------------------------------------------
class SSHLoginCheck(ValidationCheck):
    phase = CheckPhase.LOCAL
    title = "SSH login"
    fatal_on_error = True
    help = [
        "Make sure the user can log in to every host with a key and without a password,",
        "for example: ssh -o BatchMode=yes user@host whoami",
    ]

    def enabled(self) -> bool:
        return not is_local(self.config)

    def validate(self) -> None:
        address, user = host_target(self.config)
        try:
            login = self.host_command("whoami").strip()
        except Exception as exc:
            self.error(f"Unable to SSH to {address} as {user}: {exc}")
            return
        if login != user:
            self.error(f"SSH to {address} as {user} logged in as {login!r}")


class WriteableTempDirectoryCheck(ValidationCheck):
    phase = CheckPhase.LOCAL
    title = "Writeable temp directory"
    fatal_on_error = True

    def validate(self) -> None:
        tmp = shlex.quote(temp_directory(self.config))
        try:
            self.host_command(f"mkdir -p {tmp} && test -w {tmp}")
        except CommandError:
            self.error(f"The temp directory {temp_directory(self.config)} is not writeable")


class RemoteExecutableCheck(ValidationCheck):
    phase = CheckPhase.LOCAL
    title = "tpm available on the host"
    fatal_on_error = True
    help = ["Install tpm on every remote host or set remote_executable for the host"]

    def enabled(self) -> bool:
        return not is_local(self.config)

    def validate(self) -> None:
        exe = self.config.get(REMOTE_EXECUTABLE, "tpm")
        try:
            self.host_command(f"command -v {shlex.quote(exe)}")
        except CommandError:
            self.error(f"Unable to find {exe} on the host")


class CurrentReleaseDirectoryCheck(ValidationCheck):
    phase = CheckPhase.LOCAL
    title = "Current release directory"
    fatal_on_error = True
    help = ["Run install on the host before managing its services"]

    def validate(self) -> None:
        current = current_release_directory(self.config)
        out = self.host_command(f"test -d {shlex.quote(current)} && echo yes || echo no")
        if out.strip() != "yes":
            self.error(f"{current} does not exist")


# ---------------------------------------------------------------------
# Deployment checks, run on each host
# ---------------------------------------------------------------------
class HostnameCheck(ValidationCheck):
    title = "Hostname"

    def validate(self) -> None:
        address, _ = host_target(self.config)
        try:
            ipaddress.ip_address(address)
            return
        except ValueError:
            pass
        hostname = self.host_command("hostname").strip()
        names = {hostname, hostname.split(".")[0]}
        if address not in names and address.split(".")[0] not in names:
            self.warning(f"The host name {address} does not match the output of `hostname` ({hostname})")


class WriteableHomeDirectoryCheck(ValidationCheck):
    title = "Writeable home directory"
    fatal_on_error = True

    def validate(self) -> None:
        home = shlex.quote(home_directory(self.config))
        try:
            self.host_command(f"mkdir -p {home} && test -w {home}")
        except CommandError:
            self.error(f"The home directory {home_directory(self.config)} is not writeable")


class ReplicationServiceMembershipCheck(ValidationCheck):
    title = "Replication service membership"

    def validate(self) -> None:
        for alias in self.config.members(REPL_SERVICES):
            rs = self.config.get_nested([REPL_SERVICES, alias]) or {}
            ds = rs.get(DEPLOYMENT_DATASERVICE)
            host = rs.get(DEPLOYMENT_HOST)
            members = as_list(self.config.get_nested([DATASERVICES, ds, DATASERVICE_MEMBERS]))
            if host not in members:
                self.error(f"Replication service {alias} is bound to {host}, which is not a member of {ds}")


class TopologyMasterCheck(ValidationCheck):
    title = "Topology masters"
    help = ["Only the star, fan-in and all-masters topologies accept more than one master"]

    def validate(self) -> None:
        for ds in self.config.members(DATASERVICES):
            if is_composite(self.config, ds):
                continue
            topology = resolve(ds, self.config)
            masters = topology.master_members()
            missing = [m for m in masters if m not in topology.members()]
            if missing:
                self.error(f"The masters {', '.join(missing)} of {ds} are not members of it")
            if len(masters) > 1 and not topology.allow_multiple_masters:
                self.error(f"{ds} has {len(masters)} masters but the {topology.name} topology allows one")


# ---------------------------------------------------------------------
# Commit checks, run on each host before the commitment steps
# ---------------------------------------------------------------------
class ManagerRunningCheck(ValidationCheck):
    phase = CheckPhase.COMMIT
    title = "Manager status"

    POLICY = re.compile(r"COORDINATOR\[[^:\]]*:(\w+)", re.IGNORECASE)

    def enabled(self) -> bool:
        return any(
            self.config.get_nested([MANAGERS, alias, DEPLOYMENT_HOST]) == self.host
            for alias in self.config.members(MANAGERS)
        )

    def validate(self) -> None:
        running = _file_exists(self, manager_pid_file(self.config))
        self.output_property(MANAGER_IS_RUNNING, running)
        if not running:
            return
        try:
            out = self.host_command(f"echo ls | {shlex.quote(manager_bin(self.config, 'cctrl'))} -expert")
        except CommandError:
            self.warning("Unable to read the current policy from the manager")
            return
        match = self.POLICY.search(out)
        self.output_property(MANAGER_POLICY, match.group(1).lower() if match else "automatic")


class ConnectorRestartCheck(ValidationCheck):
    phase = CheckPhase.COMMIT
    title = "Connector restart"
    help = ["Pass --no-connectors to leave running connectors alone"]

    def enabled(self) -> bool:
        return self.host in self.config.members(CONNECTORS)

    def validate(self) -> None:
        running = _file_exists(self, connector_pid_file(self.config))
        if not running:
            self.output_property(RESTART_CONNECTORS, True)
            return
        if self.config.get_nested([NO_CONNECTORS]):
            self.output_property(RESTART_CONNECTORS, False)
            self.warning("The connector was not restarted and still runs the previous release")
            return
        self.output_property(RESTART_CONNECTORS, True)
        self.confirm("The running connector will be restarted, which drops client connections")


class RunningServicesCheck(ValidationCheck):
    """Record which services of the current release are running."""

    phase = CheckPhase.COMMIT
    title = "Running services"

    def validate(self) -> None:
        self.output_property(REPLICATOR_IS_RUNNING, _file_exists(self, replicator_pid_file(self.config)))
        self.output_property(MANAGER_IS_RUNNING, _file_exists(self, manager_pid_file(self.config)))
        self.output_property(CONNECTOR_IS_RUNNING, _file_exists(self, connector_pid_file(self.config)))


# ---------------------------------------------------------------------
# Post checks, run once by the orchestrator across all hosts
# ---------------------------------------------------------------------
class GlobalHostAddressesCheck(ValidationCheck):
    phase = CheckPhase.POST_VALIDATE
    title = "Unique host addresses"

    def validate(self) -> None:
        seen: Dict[str, str] = {}
        for cfg in self.context.configs:
            alias = cfg.get_nested([DEPLOYMENT_HOST])
            address, _ = host_target(cfg)
            try:
                resolved = socket.gethostbyname(address)
            except OSError:
                self.error(f"Unable to resolve the address of {address}", host=alias)
                continue
            if resolved in seen and seen[resolved] != alias:
                self.error(f"{alias} and {seen[resolved]} both resolve to {resolved}", host=alias)
            else:
                seen[resolved] = alias


class CommandCoordinatorCheck(ValidationCheck):
    """
    Pick the one host that talks to the managers on behalf of the whole
    command. Hosts whose manager is running are preferred.
    """

    phase = CheckPhase.POST_VALIDATE_COMMIT
    title = "Command coordinator"

    def validate(self) -> None:
        configs = sorted(self.context.configs, key=lambda c: c.get_nested([DEPLOYMENT_HOST]) or "")
        with_manager = [c for c in configs if ManagerRunningCheck(c).enabled()]
        running = [
            c
            for c in with_manager
            if self.context.results.get(c.get_nested([DEPLOYMENT_CONFIGURATION_KEY]), {}).get(MANAGER_IS_RUNNING)
        ]
        candidates = running or with_manager
        coordinator = candidates[0] if candidates else None
        for cfg in configs:
            self.output_property(
                IS_COMMAND_COORDINATOR,
                cfg is coordinator,
                host_key=cfg.get_nested([DEPLOYMENT_CONFIGURATION_KEY]),
            )


CHECKS: List[Type[ValidationCheck]] = [
    SSHLoginCheck,
    WriteableTempDirectoryCheck,
    RemoteExecutableCheck,
    HostnameCheck,
    WriteableHomeDirectoryCheck,
    ReplicationServiceMembershipCheck,
    TopologyMasterCheck,
    ManagerRunningCheck,
    ConnectorRestartCheck,
    GlobalHostAddressesCheck,
    CommandCoordinatorCheck,
]

AVAILABLE_CHECKS: Dict[str, Type[ValidationCheck]] = {
    c.name(): c for c in CHECKS + [CurrentReleaseDirectoryCheck, RunningServicesCheck]
}


def get_checks(names: Optional[Sequence[str]] = None) -> List[Type[ValidationCheck]]:
    """The named checks in the given order, or the default set."""
    if names is None:
        return list(CHECKS)
    try:
        return [AVAILABLE_CHECKS[name] for name in names]
    except KeyError as exc:
        raise KeyError(f"unknown validation check {exc.args[0]!r}") from None
