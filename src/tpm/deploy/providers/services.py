# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/providers/services.py

from __future__ import annotations

import json
import shlex
from pathlib import Path
from typing import List

from tpm.config.keys import (
    COMMAND_DATASERVICES,
    CONNECTORS,
    DATASERVICE_MEMBERS,
    DATASERVICES,
    DEPLOYMENT_COMMAND,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    IS_COMMAND_COORDINATOR,
    MANAGER_IS_RUNNING,
    MANAGER_POLICY,
    MANAGERS,
    PROVISION_SOURCE,
    REPL_MASTERHOST,
    REPL_SERVICES,
    RESTART_CONNECTORS,
    WAIT_FOR_MEMBERS,
)
from tpm.config.paths import (
    connector_bin,
    connector_pid_file,
    current_release_directory,
    manager_bin,
    manager_pid_file,
    release_directory,
    replicator_bin,
    replicator_pid_file,
)
from tpm.deploy.steps import (
    FINAL_GROUP_ID,
    FINAL_STEP_WEIGHT,
    FIRST_GROUP_ID,
    FIRST_STEP_WEIGHT,
    Parallelization,
    StepProvider,
    commitment_step,
    deployment_step,
    register_provider,
)
from tpm.utils.helpers import as_list, wait_until


class ServiceControl(StepProvider):
    """Service helpers shared by providers. Declares no steps of its own."""

    MANAGER_START_TIMEOUT = 120
    MEMBERS_TIMEOUT = 60
    POLL_INTERVAL = 2

    def replication_services(self) -> List[str]:
        return [
            alias
            for alias in self.config.members(REPL_SERVICES)
            if self.config.get_nested([REPL_SERVICES, alias, DEPLOYMENT_HOST]) == self.host
        ]

    def has_manager(self) -> bool:
        return any(
            self.config.get_nested([MANAGERS, alias, DEPLOYMENT_HOST]) == self.host
            for alias in self.config.members(MANAGERS)
        )

    def has_connector(self) -> bool:
        return self.host in self.config.members(CONNECTORS)

    def manages_policy(self) -> bool:
        return (
            self.has_manager()
            and bool(self.additional_property(MANAGER_IS_RUNNING))
            and self.additional_property(IS_COMMAND_COORDINATOR) is True
        )

    def cctrl(self, command: str) -> str:
        cctrl = shlex.quote(manager_bin(self.config, "cctrl"))
        return self.cmd_result(f"echo {shlex.quote(command)} | {cctrl} -expert")

    def manager_members(self) -> str:
        return self.cctrl("members")

    def wait_for_manager_members(self) -> None:
        wait_until(
            lambda: self.host in self.manager_members(),
            timeout=self.MANAGER_START_TIMEOUT,
            interval=self.POLL_INTERVAL,
            message="Unable to connect to the manager to confirm successful start",
        )

        if not self.config.get(WAIT_FOR_MEMBERS):
            return
        ds = self.config.get_nested([DEPLOYMENT_DATASERVICE])
        members = as_list(self.config.get_nested([DATASERVICES, ds, DATASERVICE_MEMBERS]))
        wait_until(
            lambda: all(m in self.manager_members() for m in members),
            timeout=self.MEMBERS_TIMEOUT,
            interval=self.POLL_INTERVAL,
            message=f"Not every member of {ds} joined the manager",
        )

    def print_services(self) -> None:
        if not self.replication_services():
            return
        out = self.cmd_result(f"{shlex.quote(replicator_bin(self.config, 'trepctl'))} services", ignore_fail=True)
        for line in out.splitlines():
            self.info(line)


@register_provider
class ServiceSteps(ServiceControl):
    """
    Stops, reconfigures and starts the replicator, manager and connector
    of a host around the release switch.
    """

    name = "services"

    # ------------------------------------------------------------------
    # deployment
    # ------------------------------------------------------------------
    @deployment_step(0, FINAL_STEP_WEIGHT)
    def apply_config_services(self) -> None:
        conf = Path(release_directory(self.config)) / "conf"
        conf.mkdir(parents=True, exist_ok=True)
        for alias in self.replication_services():
            props = self.config.get_nested([REPL_SERVICES, alias]) or {}
            ds = props.get(DEPLOYMENT_DATASERVICE, alias)
            lines = [f"{k}={','.join(map(str, v)) if isinstance(v, list) else v}" for k, v in sorted(props.items())]
            (conf / f"static-{ds}.properties").write_text("\n".join(lines) + "\n")
            self.info(f"Wrote the configuration of {ds}")

    # ------------------------------------------------------------------
    # commitment
    # ------------------------------------------------------------------
    @commitment_step(FIRST_GROUP_ID, FIRST_STEP_WEIGHT)
    def set_maintenance_policy(self) -> None:
        if not self.manages_policy():
            return
        self.info("Setting the cluster policy to maintenance")
        self.cctrl("set policy maintenance")

    @commitment_step(-1, 0)
    def stop_disabled_services(self) -> None:
        if not self.has_connector() and self.file_exists(connector_pid_file(self.config)):
            self.info("Stopping the connector, it is no longer configured")
            self.cmd_result(f"{shlex.quote(connector_bin(self.config, 'connector'))} stop")
        if not self.has_manager() and self.file_exists(manager_pid_file(self.config)):
            self.info("Stopping the manager, it is no longer configured")
            self.cmd_result(f"{shlex.quote(manager_bin(self.config, 'manager'))} stop")

    @commitment_step(-1, 1)
    def stop_replication_services(self) -> None:
        if self.file_exists(replicator_pid_file(self.config)):
            self.info("Stopping the replicator")
            self.cmd_result(f"{shlex.quote(replicator_bin(self.config, 'replicator'))} stop")

    @commitment_step(1, 0)
    def update_metadata(self) -> None:
        metadata = {
            "command": self.config.get_nested([DEPLOYMENT_COMMAND]),
            "host": self.host,
            "dataservices": as_list(self.config.get_nested([COMMAND_DATASERVICES])),
            "release": release_directory(self.config),
        }
        path = Path(release_directory(self.config)) / "conf" / "tpm_metadata.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(metadata, indent=2, sort_keys=True))

    @commitment_step(1, 1)
    def deploy_services(self) -> None:
        services = self.replication_services()
        self.output_property("deployed_services", services)
        self.info(f"Deployed {', '.join(services) or 'no replication services'} under {current_release_directory(self.config)}")

    @commitment_step(2, FINAL_STEP_WEIGHT - 1, Parallelization.BY_SERVICE)
    def start_replication_services_unless_provisioning(self) -> None:
        if not self.replication_services():
            return
        if self.config.get(PROVISION_SOURCE):
            self.info("Leaving the replicator stopped until provisioning completes")
            return
        self.info("Starting the replicator")
        self.cmd_result(f"{shlex.quote(replicator_bin(self.config, 'replicator'))} start")

    @commitment_step(2, FINAL_STEP_WEIGHT, Parallelization.BY_SERVICE)
    def wait_for_manager(self) -> None:
        if not self.has_manager():
            return
        manager = shlex.quote(manager_bin(self.config, "manager"))
        if self.file_exists(manager_pid_file(self.config)):
            self.cmd_result(f"{manager} restart")
        else:
            self.cmd_result(f"{manager} start")
        self.wait_for_manager_members()

    @commitment_step(4, 1, Parallelization.NONE)
    def start_connector(self) -> None:
        if not self.has_connector():
            return
        connector = shlex.quote(connector_bin(self.config, "connector"))
        if self.file_exists(connector_pid_file(self.config)):
            if self.additional_property(RESTART_CONNECTORS) is False:
                self.warning("The connector was not restarted")
                return
            self.info("Restarting the connector")
            self.cmd_result(f"{connector} restart")
        else:
            self.info("Starting the connector")
            self.cmd_result(f"{connector} start")

    @commitment_step(5, 0)
    def set_original_policy(self) -> None:
        if not self.manages_policy():
            return
        policy = self.additional_property(MANAGER_POLICY, "automatic")
        self.info(f"Setting the cluster policy back to {policy}")
        self.cctrl(f"set policy {policy}")

    @commitment_step(5, 1)
    def provision_server(self) -> None:
        source = self.config.get(PROVISION_SOURCE)
        if not source:
            return
        self.info(f"Provisioning from {source}")
        tprovision = shlex.quote(replicator_bin(self.config, "tprovision"))
        self.cmd_result(f"{tprovision} --source={shlex.quote(source)}")

    @commitment_step(FINAL_GROUP_ID, FINAL_STEP_WEIGHT - 1, Parallelization.NONE)
    def report_services(self) -> None:
        self.print_services()

    @commitment_step(FINAL_GROUP_ID, FINAL_STEP_WEIGHT)
    def check_ping(self) -> None:
        for alias in self.replication_services():
            upstream = as_list(self.config.get_nested([REPL_SERVICES, alias, REPL_MASTERHOST]))
            for host in upstream:
                out = self.cmd_result(
                    f"ping -c 1 -W 2 {shlex.quote(host)} >/dev/null 2>&1 && echo ok || echo fail"
                )
                if out != "ok":
                    self.warning(f"Unable to ping {host}, the upstream of {alias}")
