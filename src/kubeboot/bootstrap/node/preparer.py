# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/node/preparer.py

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ...config.models import ClusterSettings
from ...errors import KubebootError, RemoteStepFailed
from ...utils.retry import wait_for
from ...utils.ssh_runner import shq
from ..template_renderer import TemplateRenderer
from .interface import RemoteSession
from .models import Node

log = logging.getLogger("kubeboot")

APT = "DEBIAN_FRONTEND=noninteractive apt-get"
KUBE_PACKAGES = "kubelet kubeadm kubectl"
KEYRING = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"

KERNEL_MODULES = ("overlay", "br_netfilter")
SYSCTL_PARAMS = {
    "net.bridge.bridge-nf-call-iptables": 1,
    "net.bridge.bridge-nf-call-ip6tables": 1,
    "net.ipv4.ip_forward": 1,
}

STEPS = (
    "sudoers",
    "hostname",
    "swap",
    "kernel_modules",
    "sysctl",
    "time_sync",
    "container_runtime",
    "kubernetes_packages",
)


class NodePreparer:
    """
    Converges one host to the OS state kubeadm expects:
      - sudoers              (passwordless sudo for the login user only)
      - hostname             (registry hostname + /etc/hosts entry)
      - swap                 (off now and in /etc/fstab)
      - kernel_modules       (overlay, br_netfilter; persisted)
      - sysctl               (bridged traffic through iptables, ip_forward)
      - time_sync            (wait for NTP, warn on timeout)
      - container_runtime    (containerd with the systemd cgroup driver)
      - kubernetes_packages  (pinned pkgs.k8s.io repo, install + hold)

    Every step overwrites or guards what it writes, so running prepare()
    twice leaves the node exactly as one run did.
    """

    def __init__(self, settings: ClusterSettings, renderer: Optional[TemplateRenderer] = None):
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()

    # ------------------ steps ------------------

    def step_sudoers(self, s: RemoteSession, node: Node) -> None:
        path = f"/etc/sudoers.d/010_{node.username}-nopasswd"
        staged = f"/tmp/.kubeboot_sudoers_{node.username}"
        content = self.renderer.render("sudoers.j2", {"username": node.username})
        s.put_text(content, staged, mode=0o600)
        s.execute(
            f"visudo -cf {staged} && install -m 440 -o root -g root {staged} {path}; "
            f"rc=$?; rm -f {staged}; exit $rc",
            sudo=True,
        )

    def step_hostname(self, s: RemoteSession, node: Node) -> None:
        name = node.hostname
        s.execute(
            f'[ "$(hostnamectl --static 2>/dev/null || hostname)" = {shq(name)} ] '
            f"|| hostnamectl set-hostname {shq(name)}",
            sudo=True,
        )
        line = f"127.0.1.1 {name}"
        s.execute(
            r"if grep -qE '^127\.0\.1\.1[[:space:]]' /etc/hosts; then "
            rf"sed -i -E 's/^127\.0\.1\.1[[:space:]].*/{line}/' /etc/hosts; "
            f"else echo {shq(line)} >> /etc/hosts; fi",
            sudo=True,
        )

    def step_swap(self, s: RemoteSession, node: Node) -> None:
        s.execute("swapoff -a", sudo=True)
        # Comment active swap entries only; already commented lines stay as they are.
        s.execute(r"sed -i -E '/^[^#].*[[:space:]]swap[[:space:]]/ s/^/#/' /etc/fstab", sudo=True)

    def step_kernel_modules(self, s: RemoteSession, node: Node) -> None:
        content = self.renderer.render("modules-load-k8s.conf.j2", {"modules": KERNEL_MODULES})
        s.put_text(content, "/etc/modules-load.d/k8s.conf", mode=0o644, sudo=True)
        for m in KERNEL_MODULES:
            s.execute(f"modprobe {m}", sudo=True)

    def step_sysctl(self, s: RemoteSession, node: Node) -> None:
        content = self.renderer.render("sysctl-k8s.conf.j2", {"params": SYSCTL_PARAMS})
        s.put_text(content, "/etc/sysctl.d/k8s.conf", mode=0o644, sudo=True)
        s.execute("sysctl --system", sudo=True)

    def step_time_sync(self, s: RemoteSession, node: Node) -> None:
        s.execute("timedatectl set-ntp true", sudo=True, check=False)

        def synced() -> bool:
            res = s.execute(
                "timedatectl status | grep -Eq '(System clock|NTP) synchronized: yes'",
                check=False,
                timeout=30,
            )
            return res.ok

        def waiting(attempt: int) -> None:
            log.info("[%s] Waiting for NTP sync (attempt %d/%d)", node.hostname, attempt, self.settings.ntp_attempts)

        if wait_for(synced, attempts=self.settings.ntp_attempts, interval=self.settings.ntp_interval, on_wait=waiting):
            log.info("[%s] NTP synchronized", node.hostname)
            return
        status = s.execute("timedatectl status", check=False, timeout=30)
        log.warning(
            "[%s] NTP not synchronized after %d attempts, continuing:\n%s",
            node.hostname, self.settings.ntp_attempts, status.stdout.strip(),
        )

    def step_container_runtime(self, s: RemoteSession, node: Node) -> None:
        s.execute(f"{APT} update -qq && {APT} install -y -qq containerd", sudo=True)
        staged = "/tmp/.kubeboot_containerd.toml"
        s.execute(
            "mkdir -p /etc/containerd && "
            f"containerd config default > {staged} && "
            f"sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' {staged} && "
            f"if ! cmp -s {staged} /etc/containerd/config.toml; then "
            f"install -m 644 {staged} /etc/containerd/config.toml && systemctl restart containerd; fi; "
            f"rc=$?; rm -f {staged}; exit $rc",
            sudo=True,
        )
        s.execute("grep -q 'SystemdCgroup = true' /etc/containerd/config.toml", sudo=True)
        s.execute("systemctl enable --now containerd", sudo=True)

    def step_kubernetes_packages(self, s: RemoteSession, node: Node) -> None:
        minor = self.settings.kubernetes_minor_version
        s.execute(
            f"{APT} install -y -qq apt-transport-https ca-certificates curl gpg sshpass python3",
            sudo=True,
        )
        s.execute("install -d -m 755 /etc/apt/keyrings", sudo=True)
        s.execute(
            f"curl -fsSL https://pkgs.k8s.io/core:/stable:/v{minor}/deb/Release.key "
            f"| gpg --batch --yes --dearmor -o {KEYRING}",
            sudo=True,
        )
        repo = self.renderer.render("kubernetes.list.j2", {"keyring": KEYRING, "minor_version": minor})
        s.put_text(repo, "/etc/apt/sources.list.d/kubernetes.list", mode=0o644, sudo=True)
        s.execute(f"{APT} update -qq", sudo=True)
        s.execute(
            f"dpkg -s {KUBE_PACKAGES} >/dev/null 2>&1 || {APT} install -y -qq {KUBE_PACKAGES}",
            sudo=True,
        )
        s.execute(f"apt-mark hold {KUBE_PACKAGES}", sudo=True)
        s.execute("systemctl enable kubelet", sudo=True)

    # ------------------ public API ------------------

    def prepare(self, session: RemoteSession, node: Node, steps: Optional[Iterable[str]] = None) -> List[str]:
        """
        Run the requested steps (all by default) in their fixed order.
        Raises RemoteStepFailed naming the node and the step that broke.
        """
        wanted = list(STEPS) if steps is None else list(steps)
        unknown = [st for st in wanted if st not in STEPS]
        if unknown:
            raise ValueError(f"unknown preparation steps: {unknown}; valid: {list(STEPS)}")

        done: List[str] = []
        for step in STEPS:
            if step not in wanted:
                continue
            log.info("[%s] prepare: %s", node.hostname, step)
            try:
                getattr(self, f"step_{step}")(session, node)
            except (KubebootError, OSError) as e:
                raise RemoteStepFailed(node.hostname, step, e) from e
            done.append(step)
        log.info("[%s] Preparation complete", node.hostname)
        return done
