import json

import pytest

from tpm.messages.errors import (
    RemoteConfirmation,
    RemoteError,
    RemoteWarning,
    ResultDecodeError,
    ValidationError,
)
from tpm.messages.result import RESULT_FORMAT, RemoteResult, decode_result, encode_result, merge


def test_merge_concatenates_errors_and_right_wins():
    left = RemoteResult([RemoteError("a", "db1")], {"db1": {"x": 1, "keep": True}})
    right = RemoteResult([RemoteWarning("b", "db2")], {"db1": {"x": 2}, "db2": {"y": 3}})
    merged = merge(left, right)
    assert [e.message for e in merged.errors] == ["a", "b"]
    assert merged.properties == {"db1": {"x": 2, "keep": True}, "db2": {"y": 3}}
    assert left.properties["db1"]["x"] == 1


def test_merge_with_empty_is_identity():
    r = RemoteResult([RemoteError("a")], {"k": {"v": 1}})
    assert merge(r, RemoteResult()) == r
    assert merge(RemoteResult(), r) == r


def test_encoded_payload_keeps_error_types_and_check_names():
    result = RemoteResult(
        [
            ValidationError("disk full", "db1", "WriteableHomeDirectoryCheck", ["free some space"]),
            RemoteConfirmation("restart connector?", "db2"),
        ],
        {"db1_opt": {"manager_is_running": True}},
    )
    decoded = decode_result(encode_result(result))
    assert decoded == result
    assert isinstance(decoded.errors[0], ValidationError)
    assert decoded.errors[0].check == "WriteableHomeDirectoryCheck"
    assert decoded.errors[0].help_lines() == ["free some space"]
    assert isinstance(decoded.errors[1], RemoteConfirmation)


def test_decode_accepts_surrounding_whitespace():
    payload = b"\n" + encode_result(RemoteResult()) + b"\n"
    assert decode_result(payload) == RemoteResult()


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"   ",
        b"\xff\xfe\x00",
        b"Welcome to db1!\n{",
        json.dumps({"errors": [], "properties": {}}).encode(),
        json.dumps({"format": RESULT_FORMAT, "errors": {}, "properties": {}}).encode(),
        json.dumps({"format": RESULT_FORMAT, "errors": "", "properties": {}}).encode(),
        json.dumps({"format": RESULT_FORMAT, "errors": 0, "properties": {}}).encode(),
        json.dumps({"format": RESULT_FORMAT, "errors": [], "properties": []}).encode(),
        json.dumps({"format": RESULT_FORMAT, "errors": ["boom"], "properties": {}}).encode(),
        json.dumps([1, 2, 3]).encode(),
    ],
)
def test_decode_rejects_malformed_payloads(payload):
    with pytest.raises(ResultDecodeError):
        decode_result(payload)


def test_is_valid_ignores_warnings_and_forced_confirmations():
    assert RemoteResult([RemoteWarning("w")]).is_valid()
    assert not RemoteResult([RemoteConfirmation("c")]).is_valid()
    assert RemoteResult([RemoteConfirmation("c")]).is_valid(forced=True)
    assert not RemoteResult([RemoteError("e")]).is_valid(forced=True)
