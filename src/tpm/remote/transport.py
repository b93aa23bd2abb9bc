# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/remote/transport.py

from __future__ import annotations

import getpass
import logging
import socket
import subprocess
import threading
from functools import lru_cache
from typing import Callable, Dict, Optional, Protocol, Tuple

import paramiko

from tpm.config.keys import DEPLOYMENT_HOST, HOST, USERID
from tpm.config.properties import Properties
from tpm.messages.errors import CommandError, RemoteCommandError
from tpm.utils.retry import retry

log = logging.getLogger("tpm")


class Transport(Protocol):
    def run(self, host: str, user: str, command: str, *, timeout: Optional[float] = None) -> str: ...

    def copy(self, local_path: str, host: str, user: str, remote_path: str) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------
# Local execution
# ---------------------------------------------------------------------
class LocalRunner:
    """Runs shell commands on this machine."""

    def cmd_result(self, command: str, *, ignore_fail: bool = False, timeout: Optional[float] = None) -> str:
        log.debug(f"$ {command}")
        proc = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if proc.returncode != 0 and not ignore_fail:
            raise CommandError(command, proc.returncode, proc.stdout, proc.stderr)
        return proc.stdout.strip()


@lru_cache(maxsize=None)
def _local_names() -> frozenset:
    names = {"localhost", "127.0.0.1", "::1"}
    try:
        names.add(socket.gethostname())
        names.add(socket.getfqdn())
    except OSError:
        pass
    return frozenset(n.lower() for n in names if n)


def is_localhost(host: Optional[str]) -> bool:
    return bool(host) and host.lower() in _local_names()


def whoami() -> str:
    return getpass.getuser()


def host_target(config: Properties) -> Tuple[str, str]:
    """The (address, user) a host configuration is reached at."""
    alias = config.get_nested([DEPLOYMENT_HOST])
    return config.get(HOST, alias), config.get(USERID, whoami())


def is_local(config: Properties) -> bool:
    """True when the host is this machine and is owned by the current user."""
    address, user = host_target(config)
    return is_localhost(address) and user == whoami()


# ---------------------------------------------------------------------
# SSH
# ---------------------------------------------------------------------
class SSHTransport:
    """
    paramiko based transport. One client is kept per (host, user) and
    shared by the worker threads, commands on it are serialized.
    """

    def __init__(
        self,
        *,
        key_filename: Optional[str] = None,
        port: int = 22,
        connect_timeout: float = 30.0,
        cmd_timeout: Optional[float] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.key_filename = key_filename
        self.port = port
        self.connect_timeout = connect_timeout
        self.cmd_timeout = cmd_timeout
        self._client_factory = client_factory
        self._clients: Dict[Tuple[str, str], paramiko.SSHClient] = {}
        self._host_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def _host_lock(self, host: str, user: str) -> threading.Lock:
        with self._lock:
            return self._host_locks.setdefault((host, user), threading.Lock())

    @retry(
        retries=3,
        delay=2,
        backoff=2,
        retry_on=(paramiko.SSHException, OSError),
        on_retry=lambda attempt, exc: log.debug(f"ssh connect attempt {attempt} failed: {exc}"),
    )
    def _connect(self, host: str, user: str) -> paramiko.SSHClient:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            hostname=host,
            port=self.port,
            username=user,
            key_filename=self.key_filename,
            timeout=self.connect_timeout,
            allow_agent=True,
            look_for_keys=True,
        )
        return client

    def _client(self, host: str, user: str) -> paramiko.SSHClient:
        key = (host, user)
        with self._lock:
            client = self._clients.get(key)
        if client is None:
            client = self._connect(host, user)
            with self._lock:
                self._clients[key] = client
        return client

    def _evict(self, host: str, user: str, client: paramiko.SSHClient) -> None:
        """Forget a broken client so the next call reconnects."""
        with self._lock:
            if self._clients.get((host, user)) is client:
                del self._clients[(host, user)]
        client.close()

    def run(self, host: str, user: str, command: str, *, timeout: Optional[float] = None) -> str:
        log.debug(f"{host} >> $ {command}")
        with self._host_lock(host, user):
            client = self._client(host, user)
            try:
                _, stdout, stderr = client.exec_command(command, timeout=timeout or self.cmd_timeout)
                out = stdout.read().decode("utf-8", errors="replace")
                err = stderr.read().decode("utf-8", errors="replace")
                rc = stdout.channel.recv_exit_status()
            except paramiko.SSHException:
                self._evict(host, user, client)
                raise
        if rc != 0:
            raise RemoteCommandError(user, host, command, rc, out, err)
        return out

    def copy(self, local_path: str, host: str, user: str, remote_path: str) -> None:
        log.debug(f"{host} >> put {local_path} -> {remote_path}")
        with self._host_lock(host, user):
            client = self._client(host, user)
            try:
                sftp = client.open_sftp()
            except paramiko.SSHException:
                self._evict(host, user, client)
                raise
            try:
                sftp.put(local_path, remote_path)
            finally:
                sftp.close()

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()
