# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/joiner.py

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Set

from ..config.models import ClusterSettings
from ..errors import (
    JoinArtifactUnavailable,
    KubebootError,
    RemoteCommandError,
    RemoteStepFailed,
    TransportUnavailable,
)
from ..utils.retry import RetryError, retry
from ..utils.ssh_runner import shq
from .node.interface import RemoteSession
from .node.models import JoinArtifact, Node

log = logging.getLogger("kubeboot")

FETCH_TIMEOUT = 60
SSH_OPTS = "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null -o ConnectTimeout=10"


class JoinState(str, Enum):
    WAITING = "waiting"
    JOINING = "joining"
    JOINED = "joined"
    FAILED = "failed"


class WorkerJoiner:
    """
    Pull-side join for one worker: the worker copies the artifact from the
    control plane itself (bounded retries), runs it, then deletes its copy.

    WAITING -> JOINING -> JOINED, or FAILED from either of the first two.
    """

    def __init__(self, session: RemoteSession, control_plane: Node, settings: ClusterSettings):
        self.session = session
        self.node = session.node
        self.control_plane = control_plane
        self.settings = settings
        self.state = JoinState.WAITING
        self.consumed_tokens: Set[str] = set()

    def _fetch_command(self) -> str:
        cp = self.control_plane
        path = self.settings.join_artifact_path
        return (
            f"SSHPASS={shq(cp.password)} sshpass -e scp {SSH_OPTS} -P {cp.port} "
            f"{cp.username}@{cp.address}:{path} {path}"
        )

    def fetch(self) -> None:
        """Copy the artifact from the control plane, retrying up to fetch_attempts times."""
        self.state = JoinState.WAITING
        attempts = self.settings.fetch_attempts

        def on_retry(attempt: int, exc: Exception) -> None:
            log.info(
                "[%s] Join artifact not available yet (attempt %d/%d): %s",
                self.node.hostname, attempt, attempts, exc,
            )

        @retry(
            retries=attempts,
            delay=self.settings.fetch_interval,
            retry_on=(RemoteCommandError, TransportUnavailable),
            on_retry=on_retry,
        )
        def _copy() -> None:
            self.session.execute(self._fetch_command(), timeout=FETCH_TIMEOUT, redact=self.control_plane.password)

        try:
            _copy()
        except RetryError as e:
            self.state = JoinState.FAILED
            raise JoinArtifactUnavailable(self.node.hostname, e.attempts) from e
        log.info("[%s] Join artifact copied from %s", self.node.hostname, self.control_plane.hostname)

    def join(self) -> JoinArtifact:
        """Run the local artifact once and delete it, whatever the outcome."""
        self.state = JoinState.JOINING
        path = self.settings.join_artifact_path
        try:
            artifact = JoinArtifact.parse(self.session.read_text(path))
            artifact.verify_issuer(self.control_plane)
            if artifact.token in self.consumed_tokens:
                raise JoinArtifactUnavailable(self.node.hostname, 0, "token already used, a fresh artifact is required")
            self.consumed_tokens.add(artifact.token)
            self.session.execute(
                f"{artifact.command} --v=5",
                sudo=True,
                timeout=self.settings.join_timeout,
                redact=artifact.token,
            )
        except JoinArtifactUnavailable:
            self.state = JoinState.FAILED
            raise
        except (KubebootError, OSError, ValueError) as e:
            self.state = JoinState.FAILED
            raise RemoteStepFailed(self.node.hostname, "join", e) from e
        finally:
            self._discard(path)

        self.state = JoinState.JOINED
        log.info("[%s] Joined the cluster", self.node.hostname)
        return artifact

    def _discard(self, path: str) -> None:
        try:
            self.session.remove(path)
        except KubebootError as e:
            log.warning("[%s] could not remove %s: %s", self.node.hostname, path, e)

    def run(self) -> JoinArtifact:
        self.fetch()
        return self.join()


def watcher_state(session: RemoteSession, state_dir: str) -> Optional[tuple]:
    """(state, detail) from a push watcher's state file once it is terminal, else None."""
    res = session.execute(f"cat {state_dir}/state", check=False, timeout=30)
    lines = res.stdout.strip().splitlines() if res.ok else []
    if not lines or lines[0] not in (JoinState.JOINED.value, JoinState.FAILED.value):
        return None
    return lines[0], "\n".join(lines[1:])
