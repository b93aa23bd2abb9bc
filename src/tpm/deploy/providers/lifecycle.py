# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/providers/lifecycle.py

from __future__ import annotations

import re
import shlex
import shutil
from pathlib import Path
from typing import Optional

from tpm.config.keys import (
    BACKUP_MYSQLDUMP,
    BACKUP_SNAPSHOT,
    BACKUP_XTRABACKUP,
    FROM_EVENT,
    FROM_MASTER_BACKUP_EVENT,
    REPL_AUTOENABLE,
    REPL_DBHOST,
    REPL_DBLOGIN,
    REPL_DBPASSWORD,
    REPL_DBPORT,
    REPL_MYSQL_DATADIR,
    REPL_SERVICES,
    ROOT_PREFIX,
)
from tpm.config.paths import (
    cluster_home_bin,
    current_release_directory,
    releases_directory,
    replicator_bin,
    replicator_dynamic_properties,
)
from tpm.deploy.steps import (
    FINAL_GROUP_ID,
    FINAL_STEP_WEIGHT,
    Parallelization,
    commitment_step,
    register_provider,
)
from tpm.messages.errors import CommandError, RemoteError
from tpm.utils.helpers import WaitTimeoutError, wait_until

from .services import ServiceControl

BINLOG_POSITION = re.compile(r"\.([0-9]+)\s*([0-9]+)\s*$")
SNAPSHOT_POSITION = re.compile(r"position\s+[0-9]+\s+([0-9]+), file name.*\.([0-9]+)")


@register_provider
class StartSteps(ServiceControl):
    """
    Starts the installed services. With a starting event the replicator
    is brought online at that event before the other services start.
    """

    name = "start"

    REPLICATOR_START_TIMEOUT = 30

    def _service_setting(self, key: str, default=None):
        for alias in self.replication_services():
            value = self.config.get_nested([REPL_SERVICES, alias, key])
            if value is not None:
                return value
        return self.config.get(key, default)

    def _binlog_event(self, text: str) -> Optional[str]:
        match = BINLOG_POSITION.search(text.strip())
        if match is None:
            return None
        return f"{match.group(1)}:{match.group(2)}"

    def _read_master_file(self, name: str) -> str:
        datadir = self._service_setting(REPL_MYSQL_DATADIR, "/var/lib/mysql")
        return self.cmd_result(f"cat {shlex.quote(str(Path(datadir) / name))}")

    def _mysql(self, sql: str) -> str:
        command = ["mysql", "-N", "-B"]
        for flag, key in (("-h", REPL_DBHOST), ("-P", REPL_DBPORT), ("-u", REPL_DBLOGIN)):
            value = self._service_setting(key)
            if value is not None:
                command.append(f"{flag}{value}")
        password = self._service_setting(REPL_DBPASSWORD)
        if password:
            command.append(f"-p{password}")
        command.extend(["-e", sql])
        return self.cmd_result(" ".join(shlex.quote(str(part)) for part in command))

    def master_backup_event(self, backup: str) -> Optional[str]:
        """The binary log position stored by the given type of master backup."""
        if backup == BACKUP_XTRABACKUP:
            return self._binlog_event(self._read_master_file("xtrabackup_binlog_info"))
        if backup == BACKUP_MYSQLDUMP:
            lines = self._read_master_file("master.info").splitlines()
            return self._binlog_event(" ".join(lines[1:3]))
        if backup == BACKUP_SNAPSHOT:
            log_error = self._mysql("show variables like 'log_error'").split()
            if len(log_error) < 2:
                return None
            prefix = "sudo -n " if self.config.get(ROOT_PREFIX) else ""
            out = self.cmd_result(
                f"{prefix}grep 'Last MySQL binlog file position' {shlex.quote(log_error[-1])} | tail -n 1",
                ignore_fail=True,
            )
            match = SNAPSHOT_POSITION.search(out)
            if match is None:
                return None
            return f"{match.group(2)}:{match.group(1)}"
        raise RemoteError(f"Unrecognized backup type {backup}", self.host)

    def starting_event(self) -> Optional[str]:
        event = self.additional_property(FROM_EVENT)
        if event:
            return event
        backup = self.additional_property(FROM_MASTER_BACKUP_EVENT)
        if not backup:
            return None
        event = self.master_backup_event(backup)
        if event is None:
            raise RemoteError(f"Unable to find the binary log position in the {backup} backup", self.host)
        return event

    def _set_auto_enable(self, enabled: bool) -> None:
        value = "true" if enabled else "false"
        for alias in self.replication_services():
            path = shlex.quote(replicator_dynamic_properties(self.config, alias))
            self.cmd_result(
                f"touch {path} && sed -i '/^replicator.auto_enable=/d' {path} "
                f"&& echo replicator.auto_enable={value} >> {path}"
            )

    def _replicator_services(self) -> str:
        return self.cmd_result(f"{shlex.quote(replicator_bin(self.config, 'trepctl'))} services")

    def start_replicator_at(self, event: str) -> None:
        replicator = shlex.quote(replicator_bin(self.config, "replicator"))
        trepctl = shlex.quote(replicator_bin(self.config, "trepctl"))

        self._set_auto_enable(False)
        self.info(f"Starting the replicator at {event}")
        self.cmd_result(f"{replicator} start")
        try:
            wait_until(
                self._replicator_services,
                timeout=self.REPLICATOR_START_TIMEOUT,
                interval=self.POLL_INTERVAL,
                message="Unable to connect to the replicator to confirm successful start",
            )
        except WaitTimeoutError as exc:
            self.cmd_result(f"{replicator} stop", ignore_fail=True)
            raise RemoteError(str(exc), self.host) from exc

        for alias in self.replication_services():
            try:
                self.cmd_result(f"{trepctl} -service {shlex.quote(alias)} online -from-event {shlex.quote(event)}")
            except CommandError as exc:
                raise RemoteError(f"Unable to bring the replicator online at {event}", self.host) from exc

        if self._service_setting(REPL_AUTOENABLE) is True:
            self._set_auto_enable(True)

    @commitment_step(1, FINAL_STEP_WEIGHT)
    def start_services(self) -> None:
        event = self.starting_event()
        if event and self.replication_services():
            self.start_replicator_at(event)
        self.info("Starting all services")
        self.cmd_result(shlex.quote(cluster_home_bin(self.config, "startall")), ignore_fail=True)

    @commitment_step(2, -1)
    def wait_for_manager(self) -> None:
        if self.has_manager():
            self.wait_for_manager_members()

    @commitment_step(FINAL_GROUP_ID, FINAL_STEP_WEIGHT, Parallelization.NONE)
    def report_services(self) -> None:
        self.print_services()


@register_provider
class UninstallSteps(ServiceControl):
    """Stops every service and removes the releases from the host."""

    name = "uninstall"

    @commitment_step(-1, 0)
    def stop_services(self) -> None:
        self.info("Stopping all services")
        self.cmd_result(shlex.quote(cluster_home_bin(self.config, "stopall")), ignore_fail=True)

    def reset_replication_services(self) -> None:
        services = self.replication_services()
        if not services:
            return
        replicator = shlex.quote(replicator_bin(self.config, "replicator"))
        trepctl = shlex.quote(replicator_bin(self.config, "trepctl"))
        try:
            self.cmd_result(f"{replicator} start offline")
        except CommandError:
            for alias in services:
                self.warning(f"Unable to reset the {alias} replication service")
            return
        try:
            for alias in services:
                try:
                    self.cmd_result(f"{trepctl} -service {shlex.quote(alias)} reset -all -y")
                except CommandError:
                    self.warning(f"Unable to reset the {alias} replication service")
        finally:
            self.cmd_result(f"{replicator} stop", ignore_fail=True)

    @commitment_step(0, 0)
    def delete_tungsten(self) -> None:
        self.cmd_result(shlex.quote(cluster_home_bin(self.config, "undeployall")), ignore_fail=True)
        self.reset_replication_services()

        current = Path(current_release_directory(self.config))
        if current.is_symlink():
            current.unlink()
        elif current.exists():
            shutil.rmtree(current)
        releases = Path(releases_directory(self.config))
        if releases.exists():
            shutil.rmtree(releases)
        self.info(f"Removed {releases} and {current}")
