# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/commands/cluster.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Type

from tpm.config.keys import (
    COMMAND_DATASERVICES,
    CONNECTORS,
    DATASERVICE_ENABLED,
    DATASERVICE_HUB_SERVICE,
    DATASERVICE_MASTER_SERVICES,
    DATASERVICE_RELAY_SOURCE,
    DATASERVICES,
    DEFAULTS,
    DEPLOYMENT_COMMAND,
    DEPLOYMENT_CONFIGURATION_KEY,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    FROM_EVENT,
    FROM_MASTER_BACKUP_EVENT,
    GROUPS,
    HOST,
    HOSTS,
    MANAGERS,
    MASTER_BACKUP_TYPES,
    NO_CONNECTORS,
    OPTION_GROUPS,
    RELEASE_NAME,
    REPL_SERVICES,
    SYSTEM,
    TARGET_DATASERVICE,
)
from tpm.config.paths import home_directory
from tpm.config.properties import Properties
from tpm.topology.base import composite_datasources, is_composite
from tpm.utils.helpers import as_list, to_identifier, unique

from .base import ConfigureCommand
from .registry import get_descriptor

log = logging.getLogger("tpm")


class ClusterCommand(ConfigureCommand):
    """
    Commands that act on data services. Each host configuration keeps
    only the services bound to that host plus the data services they
    depend on.
    """

    def selected_dataservices(self, config: Properties) -> Set[str]:
        selected: Set[str] = set()
        for ds in self.options.command_dataservices:
            selected.add(ds)
            if is_composite(config, ds):
                selected.update(composite_datasources(config, ds))
        return selected

    def host_selected(self, host_alias: str, config: Properties) -> bool:
        if not self.options.command_hosts:
            return True
        address = config.get_nested([HOSTS, host_alias, HOST]) or host_alias
        return host_alias in self.options.command_hosts or address in self.options.command_hosts

    @staticmethod
    def _enabled(config: Properties, ds: Optional[str]) -> bool:
        props = config.get_nested([DATASERVICES, ds]) if ds else None
        return isinstance(props, dict) and props.get(DATASERVICE_ENABLED) is not False

    def _filter_services(self, host_alias: str, config: Properties) -> List[str]:
        """Drop managers, connectors and replication services of other hosts."""
        ds_list: List[str] = []
        for group in (MANAGERS, REPL_SERVICES):
            for alias in config.members(group):
                props = config.get_nested([group, alias]) or {}
                ds = props.get(DEPLOYMENT_DATASERVICE)
                if props.get(DEPLOYMENT_HOST) != host_alias or not self._enabled(config, ds):
                    config.delete([group, alias])
                    continue
                ds_list.append(ds)

        for alias in config.members(CONNECTORS):
            props = config.get_nested([CONNECTORS, alias]) or {}
            if props.get(DEPLOYMENT_HOST, alias) != host_alias:
                config.delete([CONNECTORS, alias])
                continue
            ds_list.extend(
                ds for ds in as_list(props.get(DEPLOYMENT_DATASERVICE)) if self._enabled(config, ds)
            )
        return unique(ds_list)

    @staticmethod
    def expand_dataservices(config: Properties, ds_list: List[str]) -> List[str]:
        """
        Every data service the given ones depend on: composites they belong
        to and their members, relay sources (composites expanded), target
        services, master services and hub services.
        """
        kept = list(ds_list)
        queue = list(ds_list)
        while queue:
            ds = queue.pop(0)
            props = config.get_nested([DATASERVICES, ds]) or {}

            refs: List[str] = [
                alias for alias in config.members(DATASERVICES) if ds in composite_datasources(config, alias)
            ]
            if is_composite(config, ds):
                refs.extend(composite_datasources(config, ds))
            refs.extend(as_list(props.get(DATASERVICE_RELAY_SOURCE)))
            refs.extend(as_list(props.get(TARGET_DATASERVICE)))
            refs.extend(as_list(props.get(DATASERVICE_MASTER_SERVICES)))
            refs.extend(as_list(props.get(DATASERVICE_HUB_SERVICE)))

            for ref in refs:
                if ref not in kept:
                    kept.append(ref)
                    queue.append(ref)
        return kept

    @staticmethod
    def _prune_system(config: Properties) -> None:
        for group in GROUPS + OPTION_GROUPS:
            for alias in config.keys([SYSTEM, group]):
                if alias != DEFAULTS and config.get_nested([group, alias]) is None:
                    config.delete([SYSTEM, group, alias])

    def get_deployment_configuration(self, host_alias: str, config: Properties) -> Optional[Properties]:
        if not self.host_selected(host_alias, config):
            return None

        config.set([DEPLOYMENT_HOST], host_alias)
        for other in config.members(HOSTS):
            if other != host_alias:
                config.delete([HOSTS, other])

        ds_list = self._filter_services(host_alias, config)
        if not ds_list:
            log.debug(f"{host_alias} >> no data services are deployed on this host")
            return None

        selected = self.selected_dataservices(config)
        if selected and not selected.intersection(ds_list):
            return None

        kept = self.expand_dataservices(config, ds_list)
        for alias in config.members(DATASERVICES):
            if alias not in kept:
                config.delete([DATASERVICES, alias])
        for group in OPTION_GROUPS:
            for alias in config.members(group):
                if alias not in kept:
                    config.delete([group, alias])
        self._prune_system(config)

        config.set([DEPLOYMENT_DATASERVICE], ds_list[0])
        config.set([COMMAND_DATASERVICES], list(self.options.command_dataservices) or ds_list)
        config.set([DEPLOYMENT_COMMAND], self.name)
        config.set([RELEASE_NAME], self.release_name)
        if self.options.no_connectors:
            config.set([NO_CONNECTORS], True)
        config.set(
            [DEPLOYMENT_CONFIGURATION_KEY],
            to_identifier(f"{host_alias}:{home_directory(config)}"),
        )
        return config


class StartCommand(ClusterCommand):
    """Start the services, optionally bringing replication online at an event."""

    def option_errors(self) -> List[str]:
        errors: List[str] = []
        backup = self.options.from_master_backup_event
        if self.options.from_event and backup:
            errors.append("--from-event and --from-master-backup-event options are incompatible")
        if backup and backup not in MASTER_BACKUP_TYPES:
            errors.append(
                f"Unrecognized backup; only {', '.join(MASTER_BACKUP_TYPES[:-1])}, "
                f"or {MASTER_BACKUP_TYPES[-1]} are permitted: {backup}"
            )
        return errors

    def commit_settings(self) -> Dict[str, Dict[str, Any]]:
        settings = super().commit_settings()
        extra: Dict[str, Any] = {}
        if self.options.from_event:
            extra[FROM_EVENT] = self.options.from_event
        if self.options.from_master_backup_event:
            extra[FROM_MASTER_BACKUP_EVENT] = self.options.from_master_backup_event
        if not extra:
            return settings
        for config in self.deployment_configs:
            key = config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])
            settings[key] = {**settings.get(key, {}), **extra}
        return settings


class UninstallCommand(ClusterCommand):
    def option_errors(self) -> List[str]:
        if self.options.confirmed:
            return []
        return ["You must add '--i-am-sure' to the command in order to complete the uninstall"]


COMMAND_CLASSES: Dict[str, Type[ClusterCommand]] = {
    "start": StartCommand,
    "uninstall": UninstallCommand,
}


def create_command(name: str, config: Properties, options=None, **kwargs) -> ClusterCommand:
    cls = COMMAND_CLASSES.get(name, ClusterCommand)
    return cls(get_descriptor(name), config, options, **kwargs)
