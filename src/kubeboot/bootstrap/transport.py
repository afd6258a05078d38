# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# kubeboot/src/kubeboot/bootstrap/transport.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

from ..config.models import ClusterSettings
from ..errors import KubebootError, RemoteStepFailed
from ..utils.retry import attempts_for, wait_for
from ..utils.ssh_runner import shq
from . import join_watcher
from .joiner import JoinState, WorkerJoiner, watcher_state
from .node.interface import RemoteSession
from .node.models import DetachedHandle, JoinArtifact, Node

log = logging.getLogger("kubeboot")


class JoinTransport(Protocol):
    """
    Hands the one-time join artifact from the control plane to workers.

    start()            once, after the control plane is initialized
    prepare()          per worker, before delivery
    deliver_and_join() per worker; raises RemoteStepFailed or
                       JoinArtifactUnavailable when the worker does not join
    finish()           once, after every worker has been handled
    """

    name: str

    def start(self, cp_session: RemoteSession) -> None: ...

    def prepare(self, worker: Node, session: RemoteSession) -> None: ...

    def deliver_and_join(self, worker: Node, session: RemoteSession) -> None: ...

    def finish(self, cp_session: RemoteSession) -> None: ...


class _BaseTransport:
    name = "base"

    def __init__(self, settings: ClusterSettings, control_plane: Node):
        self.settings = settings
        self.control_plane = control_plane

    def start(self, cp_session: RemoteSession) -> None:
        pass

    def prepare(self, worker: Node, session: RemoteSession) -> None:
        pass

    def finish(self, cp_session: RemoteSession) -> None:
        # Workers delete their copies; the control plane's copy goes once all are done.
        path = self.settings.join_artifact_path
        try:
            cp_session.remove(path)
        except KubebootError as e:
            log.warning("[%s] could not remove %s: %s", self.control_plane.hostname, path, e)


class PullTransport(_BaseTransport):
    """Each worker fetches the artifact from the control plane itself."""

    name = "pull"

    def deliver_and_join(self, worker: Node, session: RemoteSession) -> None:
        WorkerJoiner(session, self.control_plane, self.settings).run()


class PushTransport(_BaseTransport):
    """
    The orchestrator starts a join watcher on every worker, waits for its
    ready marker, then relays the artifact from the control plane to it and
    follows the watcher's state file until it is joined or failed.
    """

    name = "push"

    def __init__(self, settings: ClusterSettings, control_plane: Node):
        super().__init__(settings, control_plane)
        self._command: Optional[str] = None
        self._watchers: Dict[str, DetachedHandle] = {}

    @property
    def _dir(self) -> str:
        return self.settings.watcher_dir

    def _polls(self, timeout: float) -> int:
        return attempts_for(timeout, self.settings.poll_interval)

    def _gone(self, worker: Node, step: str) -> RemoteStepFailed:
        handle = self._watchers[worker.hostname]
        return RemoteStepFailed(
            worker.hostname, step,
            KubebootError(f"join watcher (pid {handle.pid}) exited, see {handle.log_path}"),
        )

    def _stop(self, worker: Node, session: RemoteSession) -> None:
        handle = self._watchers.pop(worker.hostname, None)
        if handle is None:
            return
        try:
            session.stop(handle)
        except KubebootError as e:
            log.warning("[%s] could not stop join watcher pid %d: %s", worker.hostname, handle.pid, e)

    def start(self, cp_session: RemoteSession) -> None:
        text = cp_session.read_text(self.settings.join_artifact_path)
        artifact = JoinArtifact.parse(text)
        artifact.verify_issuer(self.control_plane)
        self._command = artifact.command

    def prepare(self, worker: Node, session: RemoteSession) -> None:
        d = self._dir
        path = self.settings.join_artifact_path
        try:
            session.execute(f"rm -rf {shq(d)} && mkdir -p {shq(d)} && rm -f {shq(path)}")
            script = f"{d}/join_watcher.py"
            session.put_text(Path(join_watcher.__file__).read_text(), script, mode=0o755)
            self._watchers[worker.hostname] = session.detach(
                f"python3 {script} --artifact {shq(path)} --state-dir {shq(d)}"
                f" --interval {self.settings.poll_interval}",
                f"{d}/watcher.log",
            )
        except (KubebootError, OSError) as e:
            raise RemoteStepFailed(worker.hostname, "join_watcher", e) from e

        handle = self._watchers[worker.hostname]

        def ready() -> bool:
            if session.exists(f"{d}/ready"):
                return True
            if not session.is_running(handle):
                raise self._gone(worker, "join_watcher")
            return False

        try:
            ok = wait_for(
                ready,
                attempts=self._polls(self.settings.ready_timeout),
                interval=self.settings.poll_interval,
            )
            if not ok:
                raise RemoteStepFailed(
                    worker.hostname, "join_watcher",
                    TimeoutError(f"watcher not ready after {self.settings.ready_timeout}s"),
                )
        except RemoteStepFailed:
            self._stop(worker, session)
            raise
        log.info("[%s] Join watcher ready", worker.hostname)

    def deliver_and_join(self, worker: Node, session: RemoteSession) -> None:
        if self._command is None:
            raise RuntimeError("PushTransport.start() must run before deliver_and_join()")
        path = self.settings.join_artifact_path
        partial = f"{path}.partial"
        try:
            # Write aside and rename so the watcher never reads half a file.
            session.put_text(self._command + "\n", partial, mode=0o600)
            session.execute(f"mv -f {shq(partial)} {shq(path)}")
        except (KubebootError, OSError) as e:
            self._stop(worker, session)
            raise RemoteStepFailed(worker.hostname, "deliver_artifact", e) from e
        log.info("[%s] Join artifact delivered", worker.hostname)

        handle = self._watchers.get(worker.hostname)

        def result():
            outcome = watcher_state(session, self._dir)
            if outcome or handle is None or session.is_running(handle):
                return outcome
            # The watcher may have written its state just before exiting.
            outcome = watcher_state(session, self._dir)
            if outcome is None:
                raise self._gone(worker, "join")
            return outcome

        try:
            outcome = wait_for(
                result,
                attempts=self._polls(self.settings.join_timeout),
                interval=self.settings.poll_interval,
            )
            if outcome is None:
                raise RemoteStepFailed(
                    worker.hostname, "join",
                    TimeoutError(f"no join result after {self.settings.join_timeout}s"),
                )
        except RemoteStepFailed:
            self._stop(worker, session)
            raise
        self._watchers.pop(worker.hostname, None)

        state, detail = outcome
        if state != JoinState.JOINED.value:
            raise RemoteStepFailed(worker.hostname, "join", KubebootError(detail or "join failed"))
        log.info("[%s] Joined the cluster", worker.hostname)


def build_transport(settings: ClusterSettings, control_plane: Node) -> JoinTransport:
    if settings.join_strategy == "push":
        return PushTransport(settings, control_plane)
    return PullTransport(settings, control_plane)
