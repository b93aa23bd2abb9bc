# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/messages/errors.py

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Type

Confirmer = Callable[[str], Optional[str]]


class RemoteError(Exception):
    """
    A problem attributed to one host (or to the whole run when host is
    None). Always fatal.
    """

    level = "ERROR"

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.host = host

    def is_fatal(self, *, forced: bool = False, confirmer: Optional[Confirmer] = None) -> bool:
        return True

    def describe(self) -> str:
        return self.message

    def help_lines(self) -> List[str]:
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "message": self.message, "host": self.host}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteError":
        kind = ERROR_TYPES.get(data.get("type", ""), RemoteError)
        return kind._from_fields(data)

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "RemoteError":
        return cls(data.get("message", ""), data.get("host"))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RemoteError) and self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.message, self.host))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, host={self.host!r})"


class RemoteWarning(RemoteError):
    """Recorded and displayed, never blocks."""

    level = "WARN"

    def is_fatal(self, *, forced: bool = False, confirmer: Optional[Confirmer] = None) -> bool:
        return False


class RemoteConfirmation(RemoteError):
    """
    Fatal unless the run is forced or an operator answers yes.
    The answer is cached so the operator is asked at most once.
    """

    level = "CONFIRM"

    def __init__(self, message: str, host: Optional[str] = None, answer: Optional[str] = None):
        super().__init__(message, host)
        self.answer = answer

    def is_fatal(self, *, forced: bool = False, confirmer: Optional[Confirmer] = None) -> bool:
        if forced:
            return False
        if self.answer is None and confirmer is not None:
            self.answer = confirmer(self.describe())
        return (self.answer or "").strip().lower() not in ("y", "yes")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "answer": self.answer}

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "RemoteError":
        return cls(data.get("message", ""), data.get("host"), data.get("answer"))


class _CheckMixin:
    """Carries the name and help text of the check that raised the message."""

    check: Optional[str]
    help: List[str]

    def describe(self) -> str:
        if self.check:
            return f"{self.message} ({self.check})"
        return self.message

    def help_lines(self) -> List[str]:
        return list(self.help)


class ValidationError(_CheckMixin, RemoteError):
    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        check: Optional[str] = None,
        help: Optional[List[str]] = None,
    ):
        RemoteError.__init__(self, message, host)
        self.check = check
        self.help = list(help or [])

    def to_dict(self) -> Dict[str, Any]:
        return {**RemoteError.to_dict(self), "check": self.check, "help": self.help}

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "RemoteError":
        return cls(data.get("message", ""), data.get("host"), data.get("check"), data.get("help"))


class ValidationWarning(_CheckMixin, RemoteWarning):
    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        check: Optional[str] = None,
        help: Optional[List[str]] = None,
    ):
        RemoteWarning.__init__(self, message, host)
        self.check = check
        self.help = list(help or [])

    def to_dict(self) -> Dict[str, Any]:
        return {**RemoteError.to_dict(self), "check": self.check, "help": self.help}

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "RemoteError":
        return cls(data.get("message", ""), data.get("host"), data.get("check"), data.get("help"))


class ValidationConfirmation(_CheckMixin, RemoteConfirmation):
    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        check: Optional[str] = None,
        help: Optional[List[str]] = None,
        answer: Optional[str] = None,
    ):
        RemoteConfirmation.__init__(self, message, host, answer)
        self.check = check
        self.help = list(help or [])

    def to_dict(self) -> Dict[str, Any]:
        return {**RemoteConfirmation.to_dict(self), "check": self.check, "help": self.help}

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "RemoteError":
        return cls(
            data.get("message", ""),
            data.get("host"),
            data.get("check"),
            data.get("help"),
            data.get("answer"),
        )


ERROR_TYPES: Dict[str, Type[RemoteError]] = {
    cls.__name__: cls
    for cls in (
        RemoteError,
        RemoteWarning,
        RemoteConfirmation,
        ValidationError,
        ValidationWarning,
        ValidationConfirmation,
    )
}


# ---------------------------------------------------------------------
# Failures raised (not collected) by the transport and codec
# ---------------------------------------------------------------------
class CommandError(RuntimeError):
    """A local command exited non-zero."""

    def __init__(self, command: str, rc: int, stdout: str = "", stderr: str = ""):
        super().__init__(f"Command failed (rc={rc}): {command}\n{stderr.strip()}".rstrip())
        self.command = command
        self.rc = rc
        self.stdout = stdout
        self.stderr = stderr


class RemoteCommandError(CommandError):
    """A command run over the remote transport failed."""

    def __init__(self, user: str, host: str, command: str, rc: int, stdout: str = "", stderr: str = ""):
        super().__init__(command, rc, stdout, stderr)
        self.user = user
        self.host = host
        self.args = (f"{user}@{host}: command failed (rc={rc}): {command}\n{stderr.strip()}".rstrip(),)


class ResultDecodeError(ValueError):
    """A single-host result payload could not be decoded."""
