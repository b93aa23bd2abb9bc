# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/remote/single_host.py

from __future__ import annotations

import logging
import os
import shlex
import tempfile
from typing import Any, Dict, Iterable, Optional

from tpm.config.keys import (
    DEPLOYMENT_CONFIGURATION_KEY,
    REMOTE_EXECUTABLE,
    TEMP_DIRECTORY,
)
from tpm.config.properties import Properties
from tpm.messages.result import RemoteResult, decode_result

from .transport import Transport, host_target

log = logging.getLogger("tpm")

# sub-commands only ever invoked by tpm itself
LOAD_CONFIG = "load-config"
VALIDATE_SINGLE_CONFIG = "validate-single-config"
VALIDATE_COMMIT_CONFIG = "validate-commit-config"
DEPLOY_SINGLE_CONFIG = "deploy-single-config"

PROFILE_NAME = "tpm.cfg"
ADDITIONAL_PROPERTIES_NAME = "tpm.additional.cfg"


def build_command(executable: str, subcommand: str, options: Dict[str, Any]) -> str:
    """
    Render a sub-invocation. List values repeat the option, booleans
    become bare flags, None is dropped.
    """
    parts = [executable, subcommand]
    for name, value in options.items():
        flag = "--" + name.replace("_", "-")
        if value is None or value is False:
            continue
        if value is True:
            parts.append(flag)
        elif isinstance(value, (list, tuple, set)):
            for v in value:
                parts.append(f"{flag}={shlex.quote(str(v))}")
        else:
            parts.append(f"{flag}={shlex.quote(str(value))}")
    return " ".join(parts)


def remote_directory(config: Properties) -> str:
    temp = config.get(TEMP_DIRECTORY, "/tmp")
    return f"{temp.rstrip('/')}/{config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])}"


def remote_profile_path(config: Properties) -> str:
    return f"{remote_directory(config)}/{PROFILE_NAME}"


def remote_additional_path(config: Properties) -> str:
    return f"{remote_directory(config)}/{ADDITIONAL_PROPERTIES_NAME}"


class RemoteInvoker:
    """Client side of the single-host protocol."""

    def __init__(self, transport: Transport):
        self.transport = transport

    def run(self, config: Properties, command: str) -> str:
        host, user = host_target(config)
        return self.transport.run(host, user, command)

    def upload_properties(self, config: Properties, data: Dict[str, Any], remote_path: str) -> None:
        """Write *data* to a local temporary file and copy it to the host."""
        host, user = host_target(config)
        fd, local_path = tempfile.mkstemp(prefix="tpm-", suffix=".cfg")
        os.close(fd)
        try:
            Properties(data).store(local_path)
            self.transport.copy(local_path, host, user, remote_path)
        finally:
            os.unlink(local_path)

    def upload_profile(self, config: Properties) -> str:
        self.run(config, f"mkdir -p {shlex.quote(remote_directory(config))}")
        path = remote_profile_path(config)
        self.upload_properties(config, config.props, path)
        return path

    def invoke(
        self,
        config: Properties,
        subcommand: str,
        *,
        command_name: str,
        skip_checks: Iterable[str] = (),
        enable_checks: Iterable[str] = (),
        **options: Any,
    ) -> RemoteResult:
        """
        Re-run tpm on the host for one phase and decode the result it
        prints. Transport and decode failures propagate to the caller.
        """
        executable = config.get(REMOTE_EXECUTABLE, "tpm")
        cmd = build_command(
            executable,
            subcommand,
            {
                "profile": remote_profile_path(config),
                "command": command_name,
                "skip_validation_check": list(skip_checks),
                "enable_validation_check": list(enable_checks),
                **options,
            },
        )
        output = self.run(config, cmd)
        return decode_result(output)


def read_additional_properties(path: Optional[str]) -> Optional[Dict[str, Any]]:
    if not path:
        return None
    return Properties.load(path).props
