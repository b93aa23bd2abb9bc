# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/messages/collector.py

from __future__ import annotations

import logging
import threading
import traceback
from typing import Any, Dict, List, Optional

from tpm.config.properties import Properties

from .errors import (
    Confirmer,
    RemoteConfirmation,
    RemoteError,
    RemoteWarning,
)
from .result import RemoteResult

log = logging.getLogger("tpm")


class MessageCollector:
    """
    Shared sink for errors and output properties.

    Every phase and every host writes into one of these. Workers running
    in parallel all merge into the command's collector, so every mutation
    goes through the lock.
    """

    def __init__(self, *, forced: bool = False, confirmer: Optional[Confirmer] = None):
        self.forced = forced
        self.confirmer = confirmer
        self.errors: List[RemoteError] = []
        self.output_properties = Properties()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    def reset_errors(self) -> None:
        with self._lock:
            self.errors = []

    def reset(self) -> None:
        with self._lock:
            self.errors = []
            self.output_properties.reset()

    def is_valid(self) -> bool:
        with self._lock:
            errors = list(self.errors)
        return not any(
            e.is_fatal(forced=self.forced, confirmer=self.confirmer) for e in errors
        )

    def fatal_errors(self) -> List[RemoteError]:
        with self._lock:
            errors = list(self.errors)
        return [e for e in errors if e.is_fatal(forced=self.forced, confirmer=self.confirmer)]

    def warnings(self) -> List[RemoteError]:
        with self._lock:
            return [e for e in self.errors if isinstance(e, RemoteWarning)]

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------
    def add_error(self, error: RemoteError) -> None:
        with self._lock:
            self.errors.append(error)
        prefix = f"{error.host} >> " if error.host else ""
        if isinstance(error, RemoteWarning):
            log.warning(prefix + error.describe())
        else:
            log.error(prefix + error.describe())

    def error(self, message: str, host: Optional[str] = None) -> None:
        self.add_error(RemoteError(message, host))

    def warning(self, message: str, host: Optional[str] = None) -> None:
        self.add_error(RemoteWarning(message, host))

    def confirm(self, message: str, host: Optional[str] = None) -> None:
        self.add_error(RemoteConfirmation(message, host))

    def exception(self, exc: BaseException, host: Optional[str] = None) -> None:
        log.debug(
            "%s%s",
            f"{host} >> " if host else "",
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
        if isinstance(exc, RemoteError):
            if exc.host is None:
                exc.host = host
            self.add_error(exc)
        else:
            self.add_error(RemoteError(str(exc) or type(exc).__name__, host))

    def output_property(self, host_key: str, key: str, value: Any) -> None:
        with self._lock:
            self.output_properties.set([host_key, key], value)

    def get_output_property(self, host_key: str, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self.output_properties.get_nested([host_key, key])
        return default if value is None else value

    def clear_output_properties(self, host_key: str) -> None:
        with self._lock:
            self.output_properties.delete([host_key])

    # ------------------------------------------------------------------
    # merging
    # ------------------------------------------------------------------
    def add_remote_result(self, result: RemoteResult) -> None:
        with self._lock:
            self.errors.extend(result.errors)
            for key, value in result.properties.items():
                self.output_properties.set([key], value)

    def include_messages(self, other: "MessageCollector") -> None:
        self.add_remote_result(other.get_remote_result())

    def get_remote_result(self) -> RemoteResult:
        with self._lock:
            return RemoteResult(
                errors=list(self.errors),
                properties=self.output_properties.to_dict(),
            )

    # ------------------------------------------------------------------
    # display
    # ------------------------------------------------------------------
    def render_errors(self) -> List[str]:
        """
        Render errors grouped by host. Generic errors come first. Within a
        host, consecutive errors raised by the same check share one help
        block printed after the last of them.
        """
        with self._lock:
            errors = list(self.errors)

        generic = [e for e in errors if not e.host]
        by_host: Dict[str, List[RemoteError]] = {}
        for e in errors:
            if e.host:
                by_host.setdefault(e.host, []).append(e)

        lines: List[str] = []
        lines.extend(self._render_block(generic))
        for host, host_errors in by_host.items():
            if lines:
                lines.append("")
            lines.append("#" * 72)
            lines.append(f"# Errors for {host}")
            lines.append("#" * 72)
            lines.extend(self._render_block(host_errors))
        return lines

    @staticmethod
    def _render_block(errors: List[RemoteError]) -> List[str]:
        lines: List[str] = []
        for idx, e in enumerate(errors):
            lines.append(f"{e.level:<7} >> {e.describe()}")
            check = getattr(e, "check", None)
            nxt = errors[idx + 1] if idx + 1 < len(errors) else None
            if getattr(nxt, "check", None) == check and nxt is not None:
                continue
            for help_line in e.help_lines():
                lines.append(f"  {help_line}")
        return lines

    def output_errors(self, logger: Optional[logging.Logger] = None) -> None:
        logger = logger or log
        for line in self.render_errors():
            logger.info(line)
