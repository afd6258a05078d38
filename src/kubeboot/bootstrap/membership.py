# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/membership.py
from __future__ import annotations

import json
import logging
from typing import Dict, Iterable

from ..config.models import ClusterSettings
from ..errors import KubebootError
from ..utils.retry import attempts_for, wait_for
from .node.interface import RemoteSession

log = logging.getLogger("kubeboot")


def _ready_map(data: dict) -> Dict[str, bool]:
    out: Dict[str, bool] = {}
    for item in data.get("items", []):
        name = item.get("metadata", {}).get("name")
        conds = item.get("status", {}).get("conditions", [])
        ready = any(c.get("type") == "Ready" and c.get("status") == "True" for c in conds)
        if name:
            out[name] = ready
    return out


class MembershipCheck:
    """
    Observes cluster membership from the control plane. Never raises: the
    result is reported, the run's outcome is decided elsewhere.
    """

    def __init__(self, settings: ClusterSettings):
        self.settings = settings

    def nodes(self, session: RemoteSession) -> Dict[str, bool]:
        res = session.execute("kubectl get nodes -o json", check=False, timeout=60)
        if not res.ok:
            log.debug("[%s] kubectl get nodes failed: %s", session.node.hostname, res.stderr.strip())
            return {}
        try:
            return _ready_map(json.loads(res.stdout or "{}"))
        except json.JSONDecodeError:
            return {}

    def observe(self, session: RemoteSession, expected: Iterable[str]) -> Dict[str, bool]:
        """
        Poll until every expected hostname is Ready or membership_timeout
        passes, then log the wide node table. Returns {hostname: ready}.
        """
        expected = list(expected)
        last: Dict[str, bool] = {}

        def all_ready() -> bool:
            nonlocal last
            last = self.nodes(session)
            return bool(expected) and all(last.get(h) for h in expected)

        try:
            wait_for(
                all_ready,
                attempts=attempts_for(self.settings.membership_timeout, self.settings.poll_interval),
                interval=self.settings.poll_interval,
            )
            table = session.execute("kubectl get nodes -o wide", check=False, timeout=60)
            log.info("Cluster node status:\n%s", table.stdout.rstrip() or table.stderr.rstrip())
        except KubebootError as e:
            log.warning("Membership check could not complete: %s", e)

        result = {h: bool(last.get(h)) for h in expected}
        for name, ready in last.items():
            result.setdefault(name, ready)
        not_ready = [h for h in expected if not result.get(h)]
        if not_ready:
            log.warning("Nodes not Ready yet: %s", ", ".join(not_ready))
        else:
            log.info("All %d nodes Ready", len(expected))
        return result
