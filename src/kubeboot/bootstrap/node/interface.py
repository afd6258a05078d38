# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/node/interface.py

from __future__ import annotations
from typing import Callable, Optional, Protocol

from ...config.models import ClusterSettings
from .models import DetachedHandle, Node, SessionResult


class RemoteSession(Protocol):
    """
    Contract for running commands on one node. SSHRunner is the real
    implementation; tests substitute a recording fake.
    """

    node: Node

    def execute(
        self,
        command: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
        check: bool = True,
        redact: Optional[str] = None,
    ) -> SessionResult:
        """Run in the foreground; raise RemoteCommandError on non-zero exit when check=True."""
        ...

    def detach(self, command: str, log_path: str) -> DetachedHandle: ...

    def is_running(self, handle: DetachedHandle) -> bool: ...

    def stop(self, handle: DetachedHandle) -> None: ...

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = False) -> None: ...

    def read_text(self, remote_path: str) -> str: ...

    def exists(self, remote_path: str) -> bool: ...

    def remove(self, remote_path: str, *, sudo: bool = False) -> None: ...

    def close(self) -> None: ...


SessionFactory = Callable[[Node, ClusterSettings], RemoteSession]
