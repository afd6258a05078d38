# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/node/registry.py

from __future__ import annotations

from typing import Iterator, Tuple

from ...config.models import BootstrapConfig
from .models import Node, Role


class NodeRegistry:
    """
    Static, ordered roster of cluster nodes. Index 0 is the control plane,
    every other entry is a worker.
    """

    def __init__(self, nodes: Tuple[Node, ...]):
        if not nodes:
            raise ValueError("roster is empty")
        planes = [n for n in nodes if n.role is Role.CONTROL_PLANE]
        if len(planes) != 1 or nodes[0] is not planes[0]:
            raise ValueError("exactly one control plane is required, at index 0")
        self._nodes = tuple(nodes)

    @classmethod
    def from_config(cls, cfg: BootstrapConfig) -> "NodeRegistry":
        nodes = tuple(
            Node(
                role=Role.CONTROL_PLANE if i == 0 else Role.WORKER,
                hostname=spec.hostname,
                address=spec.address,
                username=spec.username,
                password=spec.password,
                index=i,
                port=spec.port,
            )
            for i, spec in enumerate(cfg.nodes)
        )
        return cls(nodes)

    @property
    def control_plane(self) -> Node:
        return self._nodes[0]

    @property
    def workers(self) -> Tuple[Node, ...]:
        return self._nodes[1:]

    def get(self, hostname: str) -> Node:
        for n in self._nodes:
            if n.hostname == hostname:
                return n
        raise KeyError(f"unknown node '{hostname}'")

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)
