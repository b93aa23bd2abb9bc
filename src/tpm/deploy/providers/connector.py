# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/providers/connector.py

from __future__ import annotations

from pathlib import Path
from typing import List

from tpm.config.keys import (
    CONNECTORS,
    DATASERVICE_MEMBERS,
    DATASERVICES,
    DEPLOYMENT_DATASERVICE,
)
from tpm.config.paths import release_directory
from tpm.deploy.steps import StepProvider, deployment_step, register_provider
from tpm.utils.helpers import as_list


@register_provider
class ConnectorSteps(StepProvider):
    name = "connector"

    def dataservices(self) -> List[str]:
        return as_list(self.config.get_nested([CONNECTORS, self.host, DEPLOYMENT_DATASERVICE]))

    @deployment_step(0, 10)
    def deploy_connector(self) -> None:
        if self.host not in self.config.members(CONNECTORS):
            return
        lines = []
        for ds in self.dataservices():
            members = as_list(self.config.get_nested([DATASERVICES, ds, DATASERVICE_MEMBERS]))
            lines.append(f"dataservice.{ds}.members={','.join(members)}")
        lines.append(f"dataservices={','.join(self.dataservices())}")

        path = Path(release_directory(self.config)) / "conf" / "connector.properties"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n")
        self.info(f"Wrote {path}")
