# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/config/paths.py

from __future__ import annotations

import posixpath

from .keys import HOME_DIRECTORY, RELEASE_NAME, TEMP_DIRECTORY
from .properties import Properties

DEFAULT_HOME_DIRECTORY = "/opt/continuent"
DEFAULT_TEMP_DIRECTORY = "/tmp"
CURRENT_RELEASE = "tungsten"


def home_directory(config: Properties) -> str:
    return config.get(HOME_DIRECTORY, DEFAULT_HOME_DIRECTORY)


def temp_directory(config: Properties) -> str:
    return config.get(TEMP_DIRECTORY, DEFAULT_TEMP_DIRECTORY)


def releases_directory(config: Properties) -> str:
    return posixpath.join(home_directory(config), "releases")


def current_release_directory(config: Properties) -> str:
    return posixpath.join(home_directory(config), CURRENT_RELEASE)


def replicator_bin(config: Properties, name: str) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-replicator", "bin", name)


def manager_bin(config: Properties, name: str) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-manager", "bin", name)


def connector_bin(config: Properties, name: str) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-connector", "bin", name)


def replicator_pid_file(config: Properties) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-replicator", "var", "treplicator.pid")


def manager_pid_file(config: Properties) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-manager", "var", "tmanager.pid")


def connector_pid_file(config: Properties) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-connector", "var", "tconnector.pid")


def release_directory(config: Properties) -> str:
    return posixpath.join(releases_directory(config), config.get(RELEASE_NAME, "tpm-release"))


def cluster_home_bin(config: Properties, name: str) -> str:
    return posixpath.join(current_release_directory(config), "cluster-home", "bin", name)


def replicator_dynamic_properties(config: Properties, service: str) -> str:
    return posixpath.join(current_release_directory(config), "tungsten-replicator", "conf", f"dynamic-{service}.properties")
