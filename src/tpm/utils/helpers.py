# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/utils/helpers.py

from __future__ import annotations

import re
import time
from typing import Any, Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class WaitTimeoutError(RuntimeError):
    """Raised when a scoped wait runs out of time."""


def to_identifier(value: str) -> str:
    """Turn ``db1:/opt/continuent`` into ``db1_opt_continuent``."""
    return re.sub(r"_+", "_", re.sub(r"[^A-Za-z0-9]", "_", value)).strip("_").lower()


def as_list(value: Any) -> List[str]:
    """Accept a list or a comma separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(",") if v.strip()]


def unique(values: Iterable[T]) -> List[T]:
    out: List[T] = []
    for v in values:
        if v not in out:
            out.append(v)
    return out


def wait_until(
    predicate: Callable[[], Optional[T]],
    *,
    timeout: float,
    interval: float = 1.0,
    message: str = "Timed out",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Poll *predicate* until it returns a truthy value or *timeout* seconds
    pass. Exceptions raised by the predicate count as a failed attempt.
    """
    deadline = clock() + timeout
    last_exc: Optional[Exception] = None
    while True:
        try:
            result = predicate()
            if result:
                return result
        except Exception as exc:
            last_exc = exc
        if clock() >= deadline:
            raise WaitTimeoutError(message) from last_exc
        sleep(interval)
