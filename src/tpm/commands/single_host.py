# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/commands/single_host.py

from __future__ import annotations

import logging
from typing import Optional, Sequence

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.deploy.handler import DeploymentHandler, load_host_config
from tpm.deploy.steps import StepKind
from tpm.messages.collector import MessageCollector
from tpm.messages.result import RemoteResult
from tpm.remote.single_host import read_additional_properties
from tpm.validation.checks import SkipPolicy
from tpm.validation.handler import ValidationHandler

from .registry import get_descriptor

log = logging.getLogger("tpm")

# Remote side of the single-host protocol. Every entry point returns a
# RemoteResult, failures included, so the caller always gets a payload.


def _load_profile(profile: str, messages: MessageCollector) -> Optional[Properties]:
    try:
        return Properties.load(profile)
    except (OSError, ValueError) as exc:
        messages.error(f"Unable to load the host configuration {profile}: {exc}")
        return None


def run_load_config(profile: str, command_name: str) -> RemoteResult:
    messages = MessageCollector()
    config = _load_profile(profile, messages)
    if config is None:
        return messages.get_remote_result()
    try:
        get_descriptor(command_name)
        loaded = load_host_config(config)
        messages.output_property(config.get_nested([DEPLOYMENT_CONFIGURATION_KEY]), "props", loaded.props)
    except Exception as exc:
        messages.exception(exc, config.get_nested([DEPLOYMENT_HOST]))
    return messages.get_remote_result()


def run_validate_config(
    profile: str,
    command_name: str,
    *,
    commit: bool = False,
    skip_checks: Sequence[str] = (),
    enable_checks: Sequence[str] = (),
    skip_warnings: Sequence[str] = (),
) -> RemoteResult:
    try:
        checks = get_descriptor(command_name).check_classes()
    except ValueError as exc:
        messages = MessageCollector()
        messages.error(str(exc))
        return messages.get_remote_result()
    handler = ValidationHandler(
        command_name,
        checks,
        skip_policy=SkipPolicy.build(skip_checks, enable_checks, skip_warnings),
    )
    config = _load_profile(profile, handler.messages)
    if config is None:
        return handler.get_remote_result()
    try:
        if commit:
            handler.validate_commit_config(config)
        else:
            handler.validate_config(config)
    except Exception as exc:
        handler.messages.exception(exc, config.get_nested([DEPLOYMENT_HOST]))
    return handler.get_remote_result()


def run_deploy_config(
    profile: str,
    command_name: str,
    kind: str,
    group_id: Optional[int] = None,
    additional_properties: Optional[str] = None,
) -> RemoteResult:
    messages = MessageCollector()
    config = _load_profile(profile, messages)
    if config is None:
        return messages.get_remote_result()
    try:
        handler = DeploymentHandler(command_name, get_descriptor(command_name).provider_classes())
        handler.additional_properties = read_additional_properties(additional_properties)
        handler.deploy_config_group(config, StepKind(kind), group_id)
        return handler.get_remote_result()
    except Exception as exc:
        messages.exception(exc, config.get_nested([DEPLOYMENT_HOST]))
        return messages.get_remote_result()
