# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/deploy/providers/release.py

from __future__ import annotations

import shlex
from pathlib import Path

from tpm.config.paths import current_release_directory, release_directory
from tpm.config.properties import Properties
from tpm.deploy.steps import StepProvider, commitment_step, deployment_step, register_provider


@register_provider
class ReleaseSteps(StepProvider):
    """Lays down the release directory and switches the current link to it."""

    name = "release"

    @deployment_step(0, -40)
    def create_release(self) -> None:
        release = Path(release_directory(self.config))
        (release / "conf").mkdir(parents=True, exist_ok=True)
        Properties(self.config.saveable()).store(release / "conf" / "tpm.cfg")
        self.info(f"Created release {release}")

    @commitment_step(1, -1)
    def commit_release(self) -> None:
        release = release_directory(self.config)
        current = current_release_directory(self.config)
        self.cmd_result(f"ln -sfn {shlex.quote(release)} {shlex.quote(current)}")
        self.info(f"{current} now points at {release}")
