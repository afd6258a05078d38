# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/control_plane.py

from __future__ import annotations

import logging

from ..config.models import ClusterSettings
from ..errors import KubebootError, RemoteStepFailed
from ..utils.ssh_runner import shq
from .node.interface import RemoteSession
from .node.models import JoinArtifact, Node

log = logging.getLogger("kubeboot")

ADMIN_CONF = "/etc/kubernetes/admin.conf"
INIT_TIMEOUT = 1800


class ControlPlaneInitializer:
    """
    Runs kubeadm init on the control-plane node and issues the join artifact.
    """

    def __init__(self, settings: ClusterSettings):
        self.settings = settings

    def _init_cluster(self, s: RemoteSession, node: Node) -> None:
        if s.exists(ADMIN_CONF):
            log.info("[%s] %s exists, control plane already initialized", node.hostname, ADMIN_CONF)
            return
        # Advertise the registered address; auto-detection picks the wrong NIC on multi-homed hosts.
        s.execute(
            "kubeadm init"
            f" --pod-network-cidr={self.settings.pod_cidr}"
            f" --apiserver-advertise-address={node.address}"
            f" --cri-socket={self.settings.cri_socket}",
            sudo=True,
            timeout=max(self.settings.command_timeout, INIT_TIMEOUT),
        )

    def _admin_kubeconfig(self, s: RemoteSession, node: Node) -> None:
        home = f"$(getent passwd {shq(node.username)} | cut -d: -f6)"
        s.execute(
            f'h="{home}"; install -d -m 700 -o {node.username} "$h/.kube" && '
            f'install -m 600 -o {node.username} -g "$(id -gn {node.username})" {ADMIN_CONF} "$h/.kube/config"',
            sudo=True,
        )

    def _pod_network(self, s: RemoteSession, node: Node) -> None:
        s.execute(f"kubectl apply -f {shq(self.settings.cni_manifest_url)}")

    def _join_artifact(self, s: RemoteSession, node: Node) -> JoinArtifact:
        path = self.settings.join_artifact_path
        res = s.execute("kubeadm token create --print-join-command", sudo=True)
        artifact = JoinArtifact.parse(res.stdout)
        artifact.verify_issuer(node)
        s.put_text(artifact.command + "\n", path, mode=0o600)
        return artifact

    def initialize(self, session: RemoteSession, node: Node) -> JoinArtifact:
        """
        Bootstrap the control plane and return a fresh join artifact, also
        persisted at settings.join_artifact_path on the node.
        Raises RemoteStepFailed on any failure.
        """
        if not node.is_control_plane:
            raise ValueError(f"{node.hostname} is not the control-plane node")

        steps = (
            ("kubeadm_init", self._init_cluster),
            ("admin_kubeconfig", self._admin_kubeconfig),
            ("pod_network", self._pod_network),
        )
        for name, fn in steps:
            log.info("[%s] control-plane: %s", node.hostname, name)
            try:
                fn(session, node)
            except (KubebootError, OSError) as e:
                raise RemoteStepFailed(node.hostname, name, e) from e

        log.info("[%s] control-plane: join_artifact", node.hostname)
        try:
            artifact = self._join_artifact(session, node)
        except (KubebootError, OSError, ValueError) as e:
            raise RemoteStepFailed(node.hostname, "join_artifact", e) from e

        log.info("[%s] Join artifact written to %s (endpoint %s)", node.hostname,
                 self.settings.join_artifact_path, artifact.endpoint)
        return artifact
