# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/topology/base.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from tpm.config.keys import (
    COMMAND_DATASERVICES,
    DATASERVICE_COMPOSITE_DATASOURCES,
    DATASERVICE_HOST_OPTIONS,
    DATASERVICE_IS_COMPOSITE,
    DATASERVICE_MASTER_MEMBER,
    DATASERVICE_MEMBERS,
    DATASERVICE_RELAY_SOURCE,
    DATASERVICE_REPLICATION_OPTIONS,
    DATASERVICE_THL_PORT,
    DATASERVICE_TOPOLOGY,
    DATASERVICE_USE_CONNECTOR,
    DATASERVICE_USE_MANAGEMENT,
    DATASERVICENAME,
    DATASERVICES,
    DEFAULT_THL_PORT,
    DEFAULT_TOPOLOGY,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    HOST,
    HOSTS,
    MANAGERS,
    REPL_MASTER_URI,
    REPL_MASTERHOST,
    REPL_ROLE,
    REPL_SERVICES,
    ROLE_MASTER,
    ROLE_RELAY,
    ROLE_SLAVE,
)
from tpm.config.properties import Properties
from tpm.utils.helpers import as_list, unique

log = logging.getLogger("tpm")


class TopologyError(ValueError):
    """Raised when a data service cannot be expanded by its topology."""


def is_composite(config: Properties, ds_alias: str) -> bool:
    return bool(config.get_nested([DATASERVICES, ds_alias, DATASERVICE_IS_COMPOSITE]))


def composite_datasources(config: Properties, ds_alias: str) -> List[str]:
    return as_list(config.get_nested([DATASERVICES, ds_alias, DATASERVICE_COMPOSITE_DATASOURCES]))


def host_address(config: Properties, host_alias: str) -> str:
    return config.get_nested([HOSTS, host_alias, HOST]) or host_alias


def get_master_thl_uri(hosts: List[str], port: Any, protocol: str = "thl") -> str:
    """
    Build the upstream URI list for a set of hosts. A host that already
    names its port is used as is.
    """
    uris = []
    for h in hosts:
        if ":" in h:
            uris.append(f"{protocol}://{h}")
        else:
            uris.append(f"{protocol}://{h}:{port}/")
    return ",".join(uris)


class Topology:
    """
    Expands one data service of a host configuration into concrete
    replication services. Only the host being expanded
    (``deployment_host``) ever receives replication service entries, so
    every host can be expanded on its own.
    """

    name = ""
    allow_multiple_masters = False
    use_replicator = True
    use_management = False
    use_connector = False

    def __init__(self, ds_alias: str, config: Properties):
        self.ds_alias = ds_alias
        self.config = config

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    @property
    def host(self) -> str:
        return self.config.get_nested([DEPLOYMENT_HOST])

    def ds_props(self, ds_alias: Optional[str] = None) -> Dict[str, Any]:
        return self.config.get_nested([DATASERVICES, ds_alias or self.ds_alias]) or {}

    def ds_value(self, key: str, ds_alias: Optional[str] = None) -> Any:
        return self.ds_props(ds_alias).get(key)

    def members(self, ds_alias: Optional[str] = None) -> List[str]:
        return as_list(self.ds_value(DATASERVICE_MEMBERS, ds_alias))

    def master_members(self, ds_alias: Optional[str] = None) -> List[str]:
        return as_list(self.ds_value(DATASERVICE_MASTER_MEMBER, ds_alias))

    def relay_sources(self, ds_alias: Optional[str] = None) -> List[str]:
        return as_list(self.ds_value(DATASERVICE_RELAY_SOURCE, ds_alias))

    def thl_port(self, ds_alias: Optional[str] = None) -> Any:
        return self.ds_value(DATASERVICE_THL_PORT, ds_alias) or DEFAULT_THL_PORT

    def rs_alias(self, service: Optional[str] = None, host: Optional[str] = None) -> str:
        return f"{service or self.ds_alias}_{host or self.host}"

    # ------------------------------------------------------------------
    # roles and upstream sources
    # ------------------------------------------------------------------
    def get_role(self, ds_props: Optional[Dict[str, Any]] = None, host: Optional[str] = None) -> str:
        ds_props = self.ds_props() if ds_props is None else ds_props
        host = host or self.host
        if host in as_list(ds_props.get(DATASERVICE_MASTER_MEMBER)):
            if as_list(ds_props.get(DATASERVICE_RELAY_SOURCE)):
                return ROLE_RELAY
            return ROLE_MASTER
        return ROLE_SLAVE

    def upstream_hosts(self, ds_props: Dict[str, Any], host: str) -> List[str]:
        """Hosts a replication service on *host* reads events from."""
        masters = [m for m in as_list(ds_props.get(DATASERVICE_MASTER_MEMBER)) if m != host]
        return [host_address(self.config, m) for m in masters]

    def replication_properties(
        self, ds_props: Dict[str, Any], host: str
    ) -> Dict[str, Any]:
        role = self.get_role(ds_props, host)
        props: Dict[str, Any] = {REPL_ROLE: role}
        if role != ROLE_MASTER:
            upstream = self.upstream_hosts(ds_props, host)
            if upstream:
                port = ds_props.get(DATASERVICE_THL_PORT) or DEFAULT_THL_PORT
                props[REPL_MASTERHOST] = ",".join(upstream)
                props[REPL_MASTER_URI] = get_master_thl_uri(upstream, port)
        return props

    # ------------------------------------------------------------------
    # building
    # ------------------------------------------------------------------
    def build_services(self) -> None:
        """
        Identity expansion: the current host gets one replication service
        for this data service if it is a member.
        """
        if self.host not in self.members():
            return

        self.config.set([DATASERVICES, self.ds_alias, DATASERVICENAME], self.ds_alias)
        self.config.set(
            [DATASERVICES, self.ds_alias, DATASERVICE_USE_MANAGEMENT], self.use_management
        )
        self.config.set(
            [DATASERVICES, self.ds_alias, DATASERVICE_USE_CONNECTOR], self.use_connector
        )

        rs_alias = self.rs_alias()
        self.config.override(
            [REPL_SERVICES, rs_alias],
            {
                **self.replication_properties(self.ds_props(), self.host),
                DEPLOYMENT_DATASERVICE: self.ds_alias,
                DEPLOYMENT_HOST: self.host,
            },
        )
        if self.use_management:
            self.config.include(
                [MANAGERS, rs_alias],
                {DEPLOYMENT_DATASERVICE: self.ds_alias, DEPLOYMENT_HOST: self.host},
            )

    def add_built_service(
        self,
        service: str,
        ds_props: Dict[str, Any],
        rs_props: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Materialize a derived data service on the current host. A no-op
        when the current host is not one of its members.
        """
        if self.host not in as_list(ds_props.get(DATASERVICE_MEMBERS)):
            return

        ds_props = {**ds_props, DATASERVICENAME: service, DATASERVICE_TOPOLOGY: DEFAULT_TOPOLOGY}
        ds_props.pop(DATASERVICE_IS_COMPOSITE, None)
        self.config.include([DATASERVICES, service], ds_props)

        rs_alias = self.rs_alias(service)
        original = self.config.get_nested([REPL_SERVICES, self.rs_alias()]) or {}
        self.config.include([REPL_SERVICES, rs_alias], dict(rs_props or {}))
        self.config.include([REPL_SERVICES, rs_alias], original)
        self.config.override(
            [REPL_SERVICES, rs_alias],
            {
                **self.replication_properties(ds_props, self.host),
                DEPLOYMENT_DATASERVICE: service,
                DEPLOYMENT_HOST: self.host,
            },
        )

        for group in (DATASERVICE_HOST_OPTIONS, DATASERVICE_REPLICATION_OPTIONS):
            options = self.config.get_nested([group, self.ds_alias])
            if options is not None:
                self.config.include([group, service], options)

        if self.config.get_nested([DEPLOYMENT_DATASERVICE]) == self.ds_alias:
            self.config.set([DEPLOYMENT_DATASERVICE], service)

    def remove_service(self, service: Optional[str] = None) -> None:
        service = service or self.ds_alias
        for alias in self.config.members(REPL_SERVICES):
            if self.config.get_nested([REPL_SERVICES, alias, DEPLOYMENT_DATASERVICE]) == service:
                self.config.delete([REPL_SERVICES, alias])
        self.config.delete([REPL_SERVICES, self.rs_alias(service)])
        self.config.delete([MANAGERS, self.rs_alias(service)])
        self.config.delete([DATASERVICES, service])
        for group in (DATASERVICE_HOST_OPTIONS, DATASERVICE_REPLICATION_OPTIONS):
            self.config.delete([group, service])

    def replace_command_dataservice(self, services: List[str]) -> None:
        """Point command-level references to this alias at *services*."""
        current = as_list(self.config.get_nested([COMMAND_DATASERVICES]))
        if self.ds_alias not in current:
            return
        replaced: List[str] = []
        for ds in current:
            replaced.extend(services if ds == self.ds_alias else [ds])
        self.config.set([COMMAND_DATASERVICES], unique(replaced))
