# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/topology/strategies.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Type

from tpm.config.keys import (
    DATASERVICE_ENABLED,
    DATASERVICE_HUB_MEMBER,
    DATASERVICE_HUB_SERVICE,
    DATASERVICE_MASTER_MEMBER,
    DATASERVICE_MASTER_SERVICES,
    DATASERVICE_MEMBERS,
    DATASERVICE_RELAY_SOURCE,
    DATASERVICE_TOPOLOGY,
    DATASERVICES,
    DEFAULT_TOPOLOGY,
    REPL_SVC_APPLIER_FILTERS,
    REPL_SVC_ENABLE_SLAVE_THL_LISTENER,
    REPL_SVC_EXTRACTOR_ONLY,
    ROLE_DIRECT,
    ROLE_SLAVE,
)
from tpm.config.properties import Properties
from tpm.utils.helpers import as_list, unique

from .base import (
    Topology,
    TopologyError,
    composite_datasources,
    host_address,
    is_composite,
)

log = logging.getLogger("tpm")

TOPOLOGIES: Dict[str, Type[Topology]] = {}


def register_topology(cls: Type[Topology]) -> Type[Topology]:
    TOPOLOGIES[cls.name] = cls
    return cls


def topology_names() -> List[str]:
    return sorted(TOPOLOGIES)


# ---------------------------------------------------------------------
# Identity strategies
# ---------------------------------------------------------------------
@register_topology
class MasterSlaveTopology(Topology):
    name = "master-slave"


@register_topology
class ClusteredTopology(Topology):
    name = "clustered"
    use_management = True
    use_connector = True


@register_topology
class DirectTopology(Topology):
    name = "direct"

    def get_role(self, ds_props=None, host=None) -> str:
        return ROLE_DIRECT

    def replication_properties(self, ds_props, host):
        return {**super().replication_properties(ds_props, host), REPL_SVC_EXTRACTOR_ONLY: False}


@register_topology
class ClusterSlaveTopology(Topology):
    """
    A slave data service fed by another service. The upstream list is
    taken from the relay sources, with composite sources expanded into
    the data services they are made of.
    """

    name = "cluster-slave"

    def get_role(self, ds_props=None, host=None) -> str:
        return ROLE_SLAVE

    def resolve_relay_chain(self) -> List[str]:
        sources: List[str] = []
        for src in self.relay_sources():
            if is_composite(self.config, src):
                sources.extend(composite_datasources(self.config, src))
            else:
                sources.append(src)
        return unique(sources)

    def upstream_hosts(self, ds_props: Dict[str, Any], host: str) -> List[str]:
        hosts: List[str] = []
        for src in self.resolve_relay_chain():
            src_hosts = self.master_members(src) or self.members(src)
            if not src_hosts:
                raise TopologyError(
                    f"Unable to find the hosts of relay source {src} for {self.ds_alias}"
                )
            hosts.extend(host_address(self.config, h) for h in src_hosts)
        return unique(hosts)


# ---------------------------------------------------------------------
# Re-shaping strategies
# ---------------------------------------------------------------------
class ReshapingTopology(Topology):
    """Replaces the original data service with one service per master."""

    allow_multiple_masters = True

    def masters(self) -> List[str]:
        masters = self.master_members()
        if not masters:
            raise TopologyError(f"No masters were given for {self.ds_alias}")
        return masters

    def master_services(self) -> List[str]:
        masters = self.masters()
        services = as_list(self.ds_value(DATASERVICE_MASTER_SERVICES))
        if len(services) < len(masters):
            raise TopologyError(
                f"{self.ds_alias} needs one master service name for each of its "
                f"{len(masters)} masters, {len(services)} were given"
            )
        return services[: len(masters)]

    def derived_services(self) -> List[tuple[str, Dict[str, Any], Dict[str, Any]]]:
        raise NotImplementedError

    def build_services(self) -> None:
        derived = self.derived_services()
        base = {
            k: v
            for k, v in self.ds_props().items()
            if k not in (DATASERVICE_MASTER_SERVICES, DATASERVICE_HUB_MEMBER, DATASERVICE_HUB_SERVICE)
        }
        for service, ds_props, rs_props in derived:
            self.add_built_service(service, {**base, **ds_props}, rs_props)
        self.replace_command_dataservice([s for s, _, _ in derived])
        self.remove_service()


@register_topology
class StarTopology(ReshapingTopology):
    name = "star"

    def derived_services(self):
        masters = self.masters()
        services = self.master_services()
        hub = self.ds_value(DATASERVICE_HUB_MEMBER)
        hub_service = self.ds_value(DATASERVICE_HUB_SERVICE)
        if not hub or not hub_service:
            raise TopologyError(f"{self.ds_alias} needs a hub host and a hub service")

        derived = []
        for master, service in zip(masters, services):
            derived.append(
                (
                    service,
                    {
                        DATASERVICE_MEMBERS: [master, hub],
                        DATASERVICE_MASTER_MEMBER: [master],
                        DATASERVICE_RELAY_SOURCE: [],
                    },
                    {},
                )
            )
        derived.append(
            (
                hub_service,
                {
                    DATASERVICE_MEMBERS: unique([hub] + masters),
                    DATASERVICE_MASTER_MEMBER: [hub],
                    DATASERVICE_RELAY_SOURCE: [],
                },
                {
                    REPL_SVC_ENABLE_SLAVE_THL_LISTENER: False,
                    REPL_SVC_APPLIER_FILTERS: ["bidiSlave"],
                },
            )
        )
        return derived


@register_topology
class FanInTopology(ReshapingTopology):
    name = "fan-in"

    def derived_services(self):
        masters = self.masters()
        services = self.master_services()
        slaves = [m for m in self.members() if m not in masters]
        return [
            (
                service,
                {
                    DATASERVICE_MEMBERS: [master] + slaves,
                    DATASERVICE_MASTER_MEMBER: [master],
                    DATASERVICE_RELAY_SOURCE: [],
                },
                {},
            )
            for master, service in zip(masters, services)
        ]


@register_topology
class AllMastersTopology(ReshapingTopology):
    name = "all-masters"

    def derived_services(self):
        masters = self.masters()
        services = self.master_services()
        members = self.members()
        return [
            (
                service,
                {
                    DATASERVICE_MEMBERS: list(members),
                    DATASERVICE_MASTER_MEMBER: [master],
                    DATASERVICE_RELAY_SOURCE: [],
                },
                {},
            )
            for master, service in zip(masters, services)
        ]


# ---------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------
def resolve(ds_alias: str, config: Properties) -> Topology:
    name = config.get_nested([DATASERVICES, ds_alias, DATASERVICE_TOPOLOGY]) or DEFAULT_TOPOLOGY
    try:
        cls = TOPOLOGIES[name]
    except KeyError:
        raise TopologyError(
            f"Unknown topology {name!r} for {ds_alias}; expected one of {', '.join(topology_names())}"
        ) from None
    return cls(ds_alias, config)


def build_topologies(config: Properties) -> None:
    """Expand every enabled, non-composite data service of *config* in place."""
    for ds_alias in config.members(DATASERVICES):
        if config.get_nested([DATASERVICES, ds_alias]) is None:
            continue
        if is_composite(config, ds_alias):
            continue
        if config.get_nested([DATASERVICES, ds_alias, DATASERVICE_ENABLED]) is False:
            continue
        topology = resolve(ds_alias, config)
        log.debug(f"{topology.host} >> building {topology.name} services for {ds_alias}")
        topology.build_services()
