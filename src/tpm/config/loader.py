# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/config/loader.py

import json
import logging
import os
import yaml
from pathlib import Path

from .models import DeploymentSpec
from .properties import Properties

log = logging.getLogger("tpm")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate the secrets overlay:

    1. TPM_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the deployment config
    """
    env = os.environ.get("TPM_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("TPM_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file() and p != config_path:
        return p

    return None


def _load_document(path: Path) -> dict:
    """Load a YAML or JSON file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    if path.suffix == ".json":
        return json.loads(expanded or "{}")
    return yaml.safe_load(expanded) or {}


def load_spec(path: str | Path) -> DeploymentSpec:
    """
    Load and validate a deployment description.

    Passwords and other secrets can live in a ``secrets.yaml`` mirroring
    the structure of the main file; it is deep-merged before validation.
    ``${ENV_VAR}`` placeholders are resolved in both files.
    """
    path = Path(path)
    data = _load_document(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_document(secrets_path))

    return DeploymentSpec.model_validate(data)


def load_config(path: str | Path) -> Properties:
    return load_spec(path).to_properties()
