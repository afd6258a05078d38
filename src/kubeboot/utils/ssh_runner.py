# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/utils/ssh_runner.py

from __future__ import annotations

import itertools
import logging
import os
import socket
import time
from pathlib import Path
from typing import Optional

import paramiko

from ..bootstrap.node.models import DetachedHandle, Node, SessionResult
from ..config.models import ClusterSettings
from ..errors import RemoteCommandError, TransportUnavailable

log = logging.getLogger("kubeboot")

_counter = itertools.count(1)

TIMEOUT_EXIT = 124


def shq(v: str) -> str:
    """Single-quote for bash -c."""
    return "'" + v.replace("'", "'\"'\"'") + "'"


class SSHRunner:
    """
    One password-authenticated SSH session to a node.

    Host keys are accepted on first use and never persisted: nodes are
    freshly installed machines whose keys are not known in advance.
    """

    def __init__(
        self,
        node: Node,
        *,
        connect_timeout: float = 20.0,
        command_timeout: float = 900.0,
    ):
        self.node = node
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.client: Optional[paramiko.SSHClient] = None

    # ------------------ connection ------------------

    def connect(self) -> "SSHRunner":
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.node.address,
                port=self.node.port,
                username=self.node.username,
                password=self.node.password,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise self._lost(e) from e
        self.client = client
        log.debug("[%s] connected to %s@%s", self.node.hostname, self.node.username, self.node.address)
        return self

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def __enter__(self) -> "SSHRunner":
        if self.client is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_client(self) -> paramiko.SSHClient:
        if self.client is None:
            raise TransportUnavailable(self.node.hostname, "session is not connected")
        return self.client

    # ------------------ commands ------------------

    def _wrap(self, cmd: str, sudo: bool) -> str:
        if not sudo:
            return f"bash -c {shq(cmd)}"
        # Validate (and cache) the credential first so the command itself
        # never sees the password on its stdin.
        return f"sudo -S -p '' -v && sudo -n bash -c {shq(cmd)} < /dev/null"

    def execute(
        self,
        command: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
        check: bool = True,
        redact: Optional[str] = None,
    ) -> SessionResult:
        """
        Run a shell command and wait for it. A command that outlives its
        timeout is reported with exit code 124.
        """
        client = self._require_client()
        timeout = timeout or self.command_timeout
        shown = command.replace(redact, "****") if redact else command
        log.debug("[%s] $ %s%s", self.node.hostname, "sudo " if sudo else "", shown)

        start = time.monotonic()
        try:
            stdin, stdout, stderr = client.exec_command(self._wrap(command, sudo), timeout=timeout)
            if sudo:
                stdin.write(self.node.password + "\n")
                stdin.flush()
            out, err, rc = self._drain(stdout, stderr, start + timeout)
        except socket.timeout:
            out, err, rc = "", f"timed out after {timeout}s", TIMEOUT_EXIT
        except paramiko.SSHException as e:
            raise self._lost(e) from e

        result = SessionResult(
            command=shown,
            exit_code=rc,
            stdout=out,
            stderr=err,
            duration=time.monotonic() - start,
        )
        log.debug("[%s] exit %d (%.2fs)", self.node.hostname, rc, result.duration)
        if check and not result.ok:
            raise RemoteCommandError(self.node.hostname, shown, rc, err)
        return result

    @staticmethod
    def _drain(stdout, stderr, deadline: float):
        # Both streams are read as data arrives; a full stderr window would
        # otherwise stall the command while we wait on stdout.
        chan = stdout.channel
        out_chunks: list[bytes] = []
        err_chunks: list[bytes] = []
        while not chan.exit_status_ready():
            got = False
            if chan.recv_ready():
                out_chunks.append(chan.recv(4096))
                got = True
            if chan.recv_stderr_ready():
                err_chunks.append(chan.recv_stderr(4096))
                got = True
            if time.monotonic() >= deadline:
                chan.close()
                raise socket.timeout()
            if not got:
                time.sleep(0.1)

        rc = chan.recv_exit_status()
        out_chunks.append(stdout.read())
        err_chunks.append(stderr.read())
        return (
            b"".join(out_chunks).decode("utf-8", errors="replace"),
            b"".join(err_chunks).decode("utf-8", errors="replace"),
            rc,
        )

    def _lost(self, e: Exception) -> TransportUnavailable:
        return TransportUnavailable(self.node.hostname, f"{type(e).__name__}: {e}")

    def detach(self, command: str, log_path: str) -> DetachedHandle:
        """Start *command* under nohup and return without waiting for it."""
        res = self.execute(
            f"nohup bash -c {shq(command)} > {shq(log_path)} 2>&1 < /dev/null & echo $!",
            timeout=30,
        )
        pid = int(res.stdout.strip().splitlines()[-1])
        log.debug("[%s] detached pid %d (log %s)", self.node.hostname, pid, log_path)
        return DetachedHandle(node=self.node.hostname, pid=pid, log_path=log_path)

    def is_running(self, handle: DetachedHandle) -> bool:
        return self.execute(f"kill -0 {handle.pid}", check=False, timeout=30).ok

    def stop(self, handle: DetachedHandle) -> None:
        self.execute(f"kill {handle.pid}", check=False, timeout=30)

    # ------------------ files ------------------

    def _open_sftp(self) -> paramiko.SFTPClient:
        try:
            return self._require_client().open_sftp()
        except paramiko.SSHException as e:
            raise self._lost(e) from e

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = False) -> None:
        """
        Write *content* to *remote_path*. With sudo the file is staged in /tmp
        and moved into place with install(1) so root-owned targets work.
        """
        target = f"/tmp/.kubeboot_tmp_{os.getpid()}_{next(_counter)}" if sudo else remote_path
        sftp = self._open_sftp()
        try:
            with sftp.open(target, "w") as f:
                f.write(content)
            if not sudo:
                sftp.chmod(target, mode)
        except paramiko.SSHException as e:
            raise self._lost(e) from e
        finally:
            sftp.close()
        if sudo:
            self.execute(
                f"install -m {oct(mode)[2:]} -o root -g root {target} {remote_path}; rc=$?; rm -f {target}; exit $rc",
                sudo=True,
            )

    def read_text(self, remote_path: str) -> str:
        sftp = self._open_sftp()
        try:
            with sftp.open(remote_path, "r") as f:
                data = f.read()
        except paramiko.SSHException as e:
            raise self._lost(e) from e
        finally:
            sftp.close()
        return data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data

    def copy(self, local_path, remote_path: str, direction: str = "put") -> SessionResult:
        """Transfer a file over SFTP; direction is 'put' (local -> node) or 'get'."""
        if direction not in ("put", "get"):
            raise ValueError(f"direction must be 'put' or 'get', got '{direction}'")
        start = time.monotonic()
        sftp = self._open_sftp()
        try:
            if direction == "put":
                sftp.put(str(local_path), remote_path)
            else:
                sftp.get(remote_path, str(Path(local_path)))
        except paramiko.SSHException as e:
            raise self._lost(e) from e
        finally:
            sftp.close()
        return SessionResult(
            command=f"sftp {direction} {local_path} {remote_path}",
            exit_code=0,
            duration=time.monotonic() - start,
        )

    def exists(self, remote_path: str) -> bool:
        return self.execute(f"test -e {shq(remote_path)}", check=False, timeout=30).ok

    def remove(self, remote_path: str, *, sudo: bool = False) -> None:
        self.execute(f"rm -f {shq(remote_path)}", sudo=sudo, timeout=30)


def open_runner(node: Node, settings: ClusterSettings) -> SSHRunner:
    """Connected SSHRunner for *node* using the cluster's timeouts."""
    return SSHRunner(
        node,
        connect_timeout=settings.connect_timeout,
        command_timeout=settings.command_timeout,
    ).connect()
