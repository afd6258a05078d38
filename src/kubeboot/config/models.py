# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/config/models.py

from __future__ import annotations

import ipaddress
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CALICO_MANIFEST = "https://raw.githubusercontent.com/projectcalico/calico/v3.28.0/manifests/calico.yaml"


class NodeSpec(BaseModel):
    """One host of the roster, as written in the settings file."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    address: str
    username: str
    password: str
    port: int = 22
    role: Optional[Literal["control-plane", "worker"]] = None

    @field_validator("hostname", "address", "username", "password")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class ClusterSettings(BaseModel):
    """Cluster-wide settings shared by every component."""

    model_config = ConfigDict(frozen=True)

    pod_cidr: str
    kubernetes_minor_version: str
    cni_manifest_url: str = CALICO_MANIFEST
    cri_socket: str = "unix:///var/run/containerd/containerd.sock"

    join_strategy: Literal["pull", "push"] = "pull"
    failure_policy: Literal["fail-fast", "best-effort"] = "fail-fast"

    join_artifact_path: str = "/tmp/kubeadm-join-command.sh"
    watcher_dir: str = "/tmp/kubeboot-join"

    # Retry limits
    fetch_attempts: int = Field(30, ge=1)
    fetch_interval: float = Field(10.0, ge=0)
    ntp_attempts: int = Field(24, ge=1)
    ntp_interval: float = Field(5.0, ge=0)

    # Timeouts (seconds)
    connect_timeout: float = Field(20.0, gt=0)
    command_timeout: float = Field(900.0, gt=0)
    ready_timeout: float = Field(120.0, gt=0)
    join_timeout: float = Field(600.0, gt=0)
    membership_timeout: float = Field(300.0, ge=0)
    poll_interval: float = Field(5.0, gt=0)

    @field_validator("pod_cidr")
    @classmethod
    def _valid_cidr(cls, v: str) -> str:
        ipaddress.ip_network(v, strict=False)
        return v

    @field_validator("kubernetes_minor_version")
    @classmethod
    def _minor_version(cls, v: str) -> str:
        v = v.strip().lstrip("v")
        parts = v.split(".")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"expected MAJOR.MINOR, got '{v}'")
        return v


class BootstrapConfig(BaseModel):
    """
    The whole settings file. Built once at startup and handed to every
    component; never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    nodes: List[NodeSpec] = Field(min_length=1)
    cluster: ClusterSettings

    @model_validator(mode="after")
    def _roles(self) -> "BootstrapConfig":
        first = self.nodes[0]
        if first.role == "worker":
            raise ValueError("the first node is the control plane and cannot be a worker")
        extra = [n.hostname for n in self.nodes[1:] if n.role == "control-plane"]
        if extra:
            raise ValueError(f"only the first node may be the control plane, got {extra}")

        names = [n.hostname for n in self.nodes]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate hostnames: {dupes}")
        return self
