# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/config/models.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tpm.topology.strategies import topology_names

from .keys import (
    CONNECTORS,
    DATASERVICE_COMPOSITE_DATASOURCES,
    DATASERVICE_CONNECTORS,
    DATASERVICE_ENABLED,
    DATASERVICE_HOST_OPTIONS,
    DATASERVICE_HUB_MEMBER,
    DATASERVICE_HUB_SERVICE,
    DATASERVICE_IS_COMPOSITE,
    DATASERVICE_MASTER_MEMBER,
    DATASERVICE_MASTER_SERVICES,
    DATASERVICE_MEMBERS,
    DATASERVICE_RELAY_SOURCE,
    DATASERVICE_REPLICATION_OPTIONS,
    DATASERVICE_THL_PORT,
    DATASERVICE_TOPOLOGY,
    DATASERVICES,
    DEFAULT_THL_PORT,
    DEFAULT_TOPOLOGY,
    DEFAULTS,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    HOSTS,
    MANAGERS,
    REPL_SERVICES,
    TARGET_DATASERVICE,
)
from .properties import Properties


def _split(value: Any) -> Any:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


class HostSpec(BaseModel):
    """
    Settings of one host. Unknown keys are kept and land in the property
    tree as they are.
    """

    model_config = ConfigDict(extra="allow")

    host: Optional[str] = None
    user: Optional[str] = None
    home_directory: Optional[str] = None
    temp_directory: Optional[str] = None
    remote_executable: Optional[str] = None
    skip_validation_check: List[str] = Field(default_factory=list)
    enable_validation_check: List[str] = Field(default_factory=list)
    skip_validation_warnings: List[str] = Field(default_factory=list)

    @field_validator(
        "skip_validation_check",
        "enable_validation_check",
        "skip_validation_warnings",
        mode="before",
    )
    @classmethod
    def split_lists(cls, value: Any) -> Any:
        return _split(value)


class DataServiceSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    members: List[str] = Field(default_factory=list)
    master: List[str] = Field(default_factory=list)
    topology: str = DEFAULT_TOPOLOGY
    composite: bool = False
    composite_datasources: List[str] = Field(default_factory=list)
    relay_source: List[str] = Field(default_factory=list)
    master_services: List[str] = Field(default_factory=list)
    hub: Optional[str] = None
    hub_service: Optional[str] = None
    connectors: List[str] = Field(default_factory=list)
    thl_port: int = DEFAULT_THL_PORT
    enabled: bool = True
    target_dataservice: Optional[str] = None
    host_options: Dict[str, Any] = Field(default_factory=dict)
    replication_options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "members",
        "master",
        "composite_datasources",
        "relay_source",
        "master_services",
        "connectors",
        mode="before",
    )
    @classmethod
    def split_lists(cls, value: Any) -> Any:
        return _split(value)

    @field_validator("topology")
    @classmethod
    def known_topology(cls, value: str) -> str:
        if value not in topology_names():
            raise ValueError(f"unknown topology {value!r}; expected one of {', '.join(topology_names())}")
        return value

    @model_validator(mode="after")
    def check_shape(self) -> "DataServiceSpec":
        if self.composite:
            if self.members:
                raise ValueError("a composite data service references data services, not hosts")
            if not self.composite_datasources:
                raise ValueError("a composite data service needs composite_datasources")
        else:
            unknown = [m for m in self.master if m not in self.members]
            if unknown:
                raise ValueError(f"masters {unknown} are not members")
        return self


class DeploymentSpec(BaseModel):
    """Declarative description of the whole deployment."""

    model_config = ConfigDict(extra="forbid")

    defaults: HostSpec = Field(default_factory=HostSpec)
    hosts: Dict[str, HostSpec] = Field(default_factory=dict)
    dataservices: Dict[str, DataServiceSpec] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_references(self) -> "DeploymentSpec":
        for alias, ds in self.dataservices.items():
            for ref in ds.composite_datasources + ds.relay_source:
                if ref not in self.dataservices:
                    raise ValueError(f"{alias} references unknown data service {ref!r}")
            if ds.target_dataservice and ds.target_dataservice not in self.dataservices:
                raise ValueError(
                    f"{alias} references unknown data service {ds.target_dataservice!r}"
                )
        return self

    def to_properties(self) -> Properties:
        config = Properties()
        config.set([HOSTS, DEFAULTS], self.defaults.model_dump(exclude_none=True, exclude_defaults=True))
        for alias, host in self.hosts.items():
            config.set([HOSTS, alias], host.model_dump(exclude_none=True, exclude_defaults=True))

        for alias, ds in self.dataservices.items():
            config.set(
                [DATASERVICES, alias],
                {
                    DATASERVICE_MEMBERS: ds.members,
                    DATASERVICE_MASTER_MEMBER: ds.master,
                    DATASERVICE_TOPOLOGY: ds.topology,
                    DATASERVICE_IS_COMPOSITE: ds.composite,
                    DATASERVICE_COMPOSITE_DATASOURCES: ds.composite_datasources,
                    DATASERVICE_RELAY_SOURCE: ds.relay_source,
                    DATASERVICE_MASTER_SERVICES: ds.master_services,
                    DATASERVICE_HUB_MEMBER: ds.hub,
                    DATASERVICE_HUB_SERVICE: ds.hub_service,
                    DATASERVICE_CONNECTORS: ds.connectors,
                    DATASERVICE_THL_PORT: ds.thl_port,
                    DATASERVICE_ENABLED: ds.enabled,
                    TARGET_DATASERVICE: ds.target_dataservice,
                },
            )
            if ds.host_options:
                config.set([DATASERVICE_HOST_OPTIONS, alias], ds.host_options)
            if ds.replication_options:
                config.set([DATASERVICE_REPLICATION_OPTIONS, alias], ds.replication_options)

            if ds.composite:
                continue

            for member in ds.members:
                config.set_default([HOSTS, member], {})
                config.set(
                    [REPL_SERVICES, f"{alias}_{member}"],
                    {DEPLOYMENT_HOST: member, DEPLOYMENT_DATASERVICE: alias},
                )
                if ds.topology == "clustered":
                    config.set(
                        [MANAGERS, f"{alias}_{member}"],
                        {DEPLOYMENT_HOST: member, DEPLOYMENT_DATASERVICE: alias},
                    )

            for connector in ds.connectors:
                config.set_default([HOSTS, connector], {})
                config.set([CONNECTORS, connector, DEPLOYMENT_HOST], connector)
                config.append([CONNECTORS, connector, DEPLOYMENT_DATASERVICE], [alias])

        return config
