# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/messages/result.py

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from tpm.config.properties import merge_dicts
from tpm.utils.serialize import to_jsonable

from .errors import RemoteError, ResultDecodeError

RESULT_FORMAT = "tpm-result/1"


@dataclass
class RemoteResult:
    """
    Errors and output properties produced by one host for one phase.
    Properties are keyed by the host's deployment configuration key.
    """

    errors: List[RemoteError] = field(default_factory=list)
    properties: Dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "RemoteResult") -> "RemoteResult":
        return merge(self, other)

    def is_valid(self, *, forced: bool = False) -> bool:
        return not any(e.is_fatal(forced=forced) for e in self.errors)


def merge(left: RemoteResult, right: RemoteResult) -> RemoteResult:
    """Concatenate errors in order and let *right* win on overlapping properties."""
    return RemoteResult(
        errors=list(left.errors) + list(right.errors),
        properties=merge_dicts(left.properties, right.properties),
    )


def encode_result(result: RemoteResult) -> bytes:
    payload = {
        "format": RESULT_FORMAT,
        "errors": [e.to_dict() for e in result.errors],
        "properties": to_jsonable(result.properties),
    }
    return json.dumps(payload, sort_keys=True).encode("utf-8")


def decode_result(payload: Union[bytes, str]) -> RemoteResult:
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ResultDecodeError("result payload is not valid UTF-8") from exc

    text = payload.strip()
    if not text:
        raise ResultDecodeError("result payload is empty")

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ResultDecodeError(f"result payload is not valid JSON: {text[:80]!r}") from exc

    if not isinstance(data, dict) or data.get("format") != RESULT_FORMAT:
        raise ResultDecodeError("result payload has an unknown format")

    errors = data.get("errors", [])
    properties = data.get("properties", {})
    if not isinstance(errors, list) or not isinstance(properties, dict):
        raise ResultDecodeError("result payload is malformed")

    if not all(isinstance(e, dict) for e in errors):
        raise ResultDecodeError("result payload is malformed")

    return RemoteResult(
        errors=[RemoteError.from_dict(e) for e in errors],
        properties=properties,
    )
