# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/validation/checks.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from tpm.config.keys import (
    DEPLOYMENT_CONFIGURATION_KEY,
    DEPLOYMENT_HOST,
    ENABLED_VALIDATION_CLASSES,
    SKIPPED_VALIDATION_CLASSES,
    SKIPPED_VALIDATION_WARNINGS,
)
from tpm.config.properties import Properties
from tpm.messages.errors import (
    RemoteError,
    RemoteWarning,
    ValidationConfirmation,
    ValidationError,
    ValidationWarning,
)
from tpm.remote.transport import LocalRunner, Transport, host_target, is_local
from tpm.utils.helpers import as_list

log = logging.getLogger("tpm")


class CheckPhase(Enum):
    LOCAL = "local"
    DEPLOYMENT = "deployment"
    COMMIT = "commit"
    POST_VALIDATE = "post-validate"
    POST_VALIDATE_COMMIT = "post-validate-commit"


@dataclass
class CheckContext:
    """What a check may use besides its host configuration."""

    runner: LocalRunner = field(default_factory=LocalRunner)
    transport: Optional[Transport] = None
    configs: List[Properties] = field(default_factory=list)
    # output properties gathered so far, keyed by deployment configuration key
    results: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class ValidationCheck:
    """
    One named check. Subclasses set ``phase``, ``title`` and
    ``fatal_on_error`` and implement ``validate``; ``enabled`` may look
    at per-host state to opt out.
    """

    phase = CheckPhase.DEPLOYMENT
    title = "Validation check"
    fatal_on_error = False
    help: List[str] = []

    def __init__(self, config: Properties, context: Optional[CheckContext] = None):
        self.config = config
        self.context = context or CheckContext()
        self.errors: List[RemoteError] = []
        self.output: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def name(cls) -> str:
        return cls.__name__

    @property
    def host(self) -> Optional[str]:
        return self.config.get_nested([DEPLOYMENT_HOST])

    @property
    def host_key(self) -> Optional[str]:
        return self.config.get_nested([DEPLOYMENT_CONFIGURATION_KEY])

    def enabled(self) -> bool:
        return True

    def validate(self) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------
    def error(self, message: str, host: Optional[str] = None) -> None:
        self.errors.append(ValidationError(message, host or self.host, self.name(), self.help))

    def warning(self, message: str, host: Optional[str] = None) -> None:
        self.errors.append(ValidationWarning(message, host or self.host, self.name(), self.help))

    def confirm(self, message: str, host: Optional[str] = None) -> None:
        self.errors.append(ValidationConfirmation(message, host or self.host, self.name(), self.help))

    def output_property(self, key: str, value: Any, host_key: Optional[str] = None) -> None:
        self.output.setdefault(host_key or self.host_key, {})[key] = value

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def host_command(self, command: str) -> str:
        """Run a command on the checked host, locally when possible."""
        if is_local(self.config) or self.context.transport is None:
            return self.context.runner.cmd_result(command)
        address, user = host_target(self.config)
        return self.context.transport.run(address, user, command)

    def run(self) -> bool:
        log.debug(f"{self.host} >> {self.title}")
        try:
            self.validate()
        except Exception as exc:
            log.debug(f"{self.host} >> {self.name()} raised", exc_info=True)
            self.error(f"{self.title} could not complete: {exc}")
        return self.is_valid()

    def is_valid(self) -> bool:
        return not any(not isinstance(e, RemoteWarning) for e in self.errors)


@dataclass
class SkipPolicy:
    """
    Which checks to skip. The global lists come from the command line, the
    per-host lists from each host's own configuration, so a host can opt
    out of a check the orchestrator does not know about. An explicit
    enable entry wins over any skip entry.
    """

    skipped: FrozenSet[str] = frozenset()
    enabled: FrozenSet[str] = frozenset()
    skipped_warnings: FrozenSet[str] = frozenset()
    _host_cache: Dict[str, Dict[str, FrozenSet[str]]] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def build(
        cls,
        skipped: Iterable[str] = (),
        enabled: Iterable[str] = (),
        skipped_warnings: Iterable[str] = (),
    ) -> "SkipPolicy":
        return cls(frozenset(skipped), frozenset(enabled), frozenset(skipped_warnings))

    def _host_lists(self, config: Optional[Properties]) -> Dict[str, FrozenSet[str]]:
        if config is None:
            return {"skipped": frozenset(), "enabled": frozenset(), "warnings": frozenset()}
        alias = config.get_nested([DEPLOYMENT_HOST]) or ""
        with self._lock:
            cached = self._host_cache.get(alias)
            if cached is None:
                cached = {
                    "skipped": frozenset(as_list(config.get(SKIPPED_VALIDATION_CLASSES))),
                    "enabled": frozenset(as_list(config.get(ENABLED_VALIDATION_CLASSES))),
                    "warnings": frozenset(as_list(config.get(SKIPPED_VALIDATION_WARNINGS))),
                }
                self._host_cache[alias] = cached
        return cached

    def is_skipped(self, check: str, config: Optional[Properties] = None) -> bool:
        lists = self._host_lists(config)
        if check in self.enabled or check in lists["enabled"]:
            return False
        return check in self.skipped or check in lists["skipped"]

    def is_warning_skipped(self, check: Optional[str], config: Optional[Properties] = None) -> bool:
        if not check:
            return False
        return check in self.skipped_warnings or check in self._host_lists(config)["warnings"]
