# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/backup/agent.py

from __future__ import annotations

import json
import logging
import os
import re
import shlex
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from tpm.remote.transport import LocalRunner

log = logging.getLogger("tpm")


class BackupError(RuntimeError):
    """A backup or restore could not be completed."""


@dataclass(frozen=True)
class BackupResult:
    file: str
    master_position: Optional[Dict[str, Any]] = None


def read_properties_file(path: str) -> Dict[str, str]:
    """Parse ``key=value`` lines, ignoring blanks and ``#`` comments."""
    props: Dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            props[key.strip()] = value.strip()
    return props


def write_properties_file(path: str, props: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for key, value in props.items():
            f.write(f"{key}={value}\n")


def binlog_pattern(binlog_file: str, binlog_position: Any) -> re.Pattern:
    return re.compile(rf"^{re.escape(binlog_file)}:0*{int(binlog_position)}(;|$)")


def master_position_sql(record: Dict[str, Any], schema: str) -> str:
    """Statements that make a restored host resume from *record*."""
    last_frag = 1 if record.get("lastFrag") is True else 0
    return (
        "SET SESSION SQL_LOG_BIN=0;"
        f"DELETE FROM {schema}.trep_commit_seqno;"
        f"INSERT INTO {schema}.trep_commit_seqno (task_id, seqno, fragno, last_frag, epoch_number, "
        "eventid, source_id, update_timestamp, extract_timestamp) VALUES "
        f"(0, {record['seqno']}, {record.get('frag', 0)}, {last_frag}, {record.get('epoch', 0)}, "
        f"'{record['eventId']}', '{record.get('sourceId', '')}', NOW(), NOW());"
    )


class BackupAgent:
    """
    Drives an opaque backup script. The script is called with
    ``--backup`` or ``--restore`` and ``--properties <file>``; on backup it
    writes ``file=<dump>`` into that file, and for a master backup also
    ``binlog_file`` and ``binlog_position`` so the dump can be tied to a
    THL record.
    """

    def __init__(
        self,
        script: str,
        *,
        service: Optional[str] = None,
        options: Optional[str] = None,
        runner: Optional[LocalRunner] = None,
        trepctl: str = "trepctl",
        thl: str = "thl",
    ):
        self.script = script
        self.service = service
        self.options = options
        self.runner = runner or LocalRunner()
        self.trepctl = trepctl
        self.thl = thl

    # ------------------------------------------------------------------
    # replicator access
    # ------------------------------------------------------------------
    def _service_flag(self) -> str:
        return f" -service {shlex.quote(self.service)}" if self.service else ""

    def replicator_status(self) -> Dict[str, Any]:
        out = self.runner.cmd_result(f"{self.trepctl}{self._service_flag()} status -json")
        try:
            status = json.loads(out)
        except ValueError as exc:
            raise BackupError(f"Unable to read the replicator status: {exc}") from exc
        if not isinstance(status, dict):
            raise BackupError("Unable to read the replicator status")
        return status

    def maximum_stored_seqno(self) -> int:
        return int(self.replicator_status().get("maximumStoredSeqNo", -1))

    def thl_headers(self, low: int, high: int) -> List[Dict[str, Any]]:
        if low == high:
            cmd = f"{self.thl}{self._service_flag()} list -headers -json -seqno {high}"
        else:
            cmd = f"{self.thl}{self._service_flag()} list -headers -json -low {low} -high {high}"
        try:
            records = json.loads(self.runner.cmd_result(cmd))
        except ValueError as exc:
            raise BackupError(f"Unable to read the THL records for seqno {high}: {exc}") from exc
        if not isinstance(records, list):
            raise BackupError(f"Unable to read the THL records for seqno {high}")
        return records

    # ------------------------------------------------------------------
    # script invocation
    # ------------------------------------------------------------------
    def _script_command(self, action: str, properties_path: str) -> str:
        parts = [shlex.quote(self.script), f"--{action}", "--properties", shlex.quote(properties_path)]
        if self.options:
            parts += ["--options", shlex.quote(self.options)]
        return " ".join(parts)

    def backup(self) -> BackupResult:
        status = self.replicator_status()
        is_master = status.get("role") == "master"
        if is_master and status.get("state") != "ONLINE":
            raise BackupError(
                "Unable to backup a master host unless it is ONLINE. "
                f"Try running `trepctl{self._service_flag()} online`."
            )

        fd, properties_path = tempfile.mkstemp(prefix="script-", suffix=".properties")
        os.close(fd)
        try:
            start_seqno = int(status.get("maximumStoredSeqNo", -1))
            self.runner.cmd_result(self._script_command("backup", properties_path))
            end_seqno = self.maximum_stored_seqno()
            props = read_properties_file(properties_path)
        finally:
            os.unlink(properties_path)

        dump_file = props.get("file")
        if not dump_file:
            raise BackupError(f"{self.script} did not report a backup file")
        if not os.access(dump_file, os.R_OK):
            raise BackupError(f"Dump file is not readable: {dump_file}")
        log.info(f"Backup stored in {dump_file}")

        if not is_master:
            return BackupResult(dump_file)

        binlog_file = props.get("binlog_file")
        binlog_position = props.get("binlog_position")
        if not binlog_file or not binlog_position:
            raise BackupError(
                "Unable to find the binlog position information for this backup. "
                "Please try again or take the backup from a slave"
            )

        pattern = binlog_pattern(binlog_file, binlog_position)
        log.debug(f"Search thl from {start_seqno} to {end_seqno} for {binlog_file}:{binlog_position}")
        matched = None
        for record in self.thl_headers(start_seqno, end_seqno):
            if pattern.search(str(record.get("eventId", ""))):
                matched = record
        if matched is None:
            raise BackupError("Unable to find a THL record to reflect the backup position")
        log.debug(f"Use {matched.get('seqno')} and {matched.get('eventId')}")
        return BackupResult(dump_file, matched)

    def restore(self, dump_file: str) -> None:
        fd, properties_path = tempfile.mkstemp(prefix="script-", suffix=".properties")
        os.close(fd)
        try:
            write_properties_file(properties_path, {"file": dump_file})
            self.runner.cmd_result(self._script_command("restore", properties_path))
        finally:
            os.unlink(properties_path)
        log.info(f"Restored {dump_file}")
