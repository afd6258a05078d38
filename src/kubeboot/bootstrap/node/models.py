# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/node/models.py

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ...errors import UntrustedJoinArtifact


class Role(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclass(frozen=True)
class Node:
    """
    A server from the roster. Immutable once loaded.
    """
    role: Role
    hostname: str                 # logical hostname to set (e.g., 'k8s-cp-0')
    address: str                  # IP or DNS to connect
    username: str                 # SSH login identity
    password: str = field(repr=False)
    index: int = 0
    port: int = 22

    @property
    def is_control_plane(self) -> bool:
        return self.role is Role.CONTROL_PLANE


@dataclass(frozen=True)
class SessionResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class DetachedHandle:
    """Remote process started in the background with nohup."""
    node: str
    pid: int
    log_path: str


def _endpoint_host(endpoint: str) -> str:
    if endpoint.startswith("["):
        return endpoint[1:].split("]", 1)[0]
    if endpoint.count(":") == 1:
        return endpoint.split(":", 1)[0]
    return endpoint


@dataclass(frozen=True)
class JoinArtifact:
    """
    The literal `kubeadm join ...` line plus the fields parsed out of it.
    """
    command: str
    token: str
    ca_cert_hash: str
    endpoint: str
    generated_at: datetime

    @property
    def endpoint_host(self) -> str:
        return _endpoint_host(self.endpoint)

    @classmethod
    def parse(cls, text: str, generated_at: Optional[datetime] = None) -> "JoinArtifact":
        lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
        command = next((ln for ln in lines if ln.startswith("kubeadm join")), None)
        if command is None:
            raise ValueError("no 'kubeadm join' command in artifact")

        argv = shlex.split(command)
        if len(argv) < 3 or argv[2].startswith("-"):
            raise ValueError("join command has no API server endpoint")

        opts = {}
        it = iter(argv[3:])
        for arg in it:
            if arg.startswith("--"):
                if "=" in arg:
                    k, v = arg[2:].split("=", 1)
                else:
                    k, v = arg[2:], next(it, "")
                opts[k] = v

        token = opts.get("token")
        ca_hash = opts.get("discovery-token-ca-cert-hash")
        if not token or not ca_hash:
            raise ValueError("join command lacks --token or --discovery-token-ca-cert-hash")

        return cls(
            command=command,
            token=token,
            ca_cert_hash=ca_hash,
            endpoint=argv[2],
            generated_at=generated_at or datetime.now(timezone.utc),
        )

    def verify_issuer(self, control_plane: Node) -> None:
        """Refuse artifacts that point anywhere but the registered control plane."""
        if self.endpoint_host != control_plane.address:
            raise UntrustedJoinArtifact(
                f"join endpoint {self.endpoint} does not match control plane "
                f"{control_plane.hostname} ({control_plane.address})"
            )
