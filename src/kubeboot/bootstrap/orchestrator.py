# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from ..config.models import BootstrapConfig
from ..errors import JoinArtifactUnavailable, KubebootError, TransportUnavailable
from ..observers.dispatcher import EventBus
from ..observers.interface import Observer
from ..observers.events import (
    BootstrapSummary,
    ControlPlaneFailed,
    ControlPlaneInitialized,
    JoinArtifactIssued,
    MembershipObserved,
    NodePrepareFailed,
    NodePrepared,
    NodePrepareStarted,
    RunStarted,
    WorkerJoinFailed,
    WorkerJoined,
    WorkerJoinStarted,
    new_ctx,
)
from ..utils.ssh_runner import open_runner
from .control_plane import ControlPlaneInitializer
from .membership import MembershipCheck
from .node.interface import RemoteSession, SessionFactory
from .node.models import JoinArtifact, Node
from .node.preparer import NodePreparer
from .node.registry import NodeRegistry
from .transport import JoinTransport, build_transport

log = logging.getLogger("kubeboot")

OK = "OK"
FAILED = "FAILED"
SKIPPED = "SKIPPED"


@dataclass
class NodeOutcome:
    node: str
    phase: str                  # "prepare" | "control-plane" | "join"
    status: str                 # "OK" | "FAILED" | "SKIPPED"
    step: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class BootstrapReport:
    failure_policy: str = "fail-fast"
    outcomes: List[NodeOutcome] = field(default_factory=list)
    membership: Dict[str, bool] = field(default_factory=dict)
    fatal: Optional[str] = None

    def add(self, outcome: NodeOutcome) -> None:
        self.outcomes.append(outcome)

    def failed(self) -> List[NodeOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    def summary(self) -> str:
        ok = sum(1 for o in self.outcomes if o.status == OK)
        skipped = sum(1 for o in self.outcomes if o.status == SKIPPED)
        return f"OK={ok} FAILED={len(self.failed())} SKIPPED={skipped}"

    @property
    def exit_code(self) -> int:
        if self.fatal:
            return 1
        if self.failure_policy == "fail-fast" and self.failed():
            return 1
        return 0


def _ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _failure(node: str, phase: str, e: Exception, start: float) -> NodeOutcome:
    step = getattr(e, "step", None)
    if isinstance(e, TransportUnavailable):
        step = "connect"
    elif isinstance(e, JoinArtifactUnavailable):
        step = "fetch_artifact"
    return NodeOutcome(node=node, phase=phase, status=FAILED, step=step, error=str(e), duration_ms=_ms(start))


class Orchestrator:
    """
    Bootstraps the whole roster:

      1. prepare every node concurrently
      2. initialize the control plane (barrier: nothing joins before this ends)
      3. hand the join artifact to the workers and join them concurrently
      4. observe cluster membership (reporting only)

    Remote access goes through *session_factory* so tests can drive the
    whole sequence without SSH.
    """

    def __init__(
        self,
        cfg: BootstrapConfig,
        *,
        session_factory: SessionFactory = open_runner,
        transport: Optional[JoinTransport] = None,
        preparer: Optional[NodePreparer] = None,
        initializer: Optional[ControlPlaneInitializer] = None,
        membership: Optional[MembershipCheck] = None,
        observers: Optional[List[Observer]] = None,
        run_id: Optional[str] = None,
    ):
        self.cfg = cfg
        self.settings = cfg.cluster
        self.registry = NodeRegistry.from_config(cfg)
        self.session_factory = session_factory
        self.transport = transport or build_transport(self.settings, self.registry.control_plane)
        self.preparer = preparer or NodePreparer(self.settings)
        self.initializer = initializer or ControlPlaneInitializer(self.settings)
        self.membership = membership or MembershipCheck(self.settings)
        self.bus = EventBus(observers or [])
        self.run_id = run_id or new_ctx(self.settings.join_strategy)["run_id"]

    def _ctx(self) -> dict:
        return new_ctx(self.transport.name, run_id=self.run_id)

    def _open(self, node: Node) -> RemoteSession:
        return self.session_factory(node, self.settings)

    # ------------------ phase 1: preparation ------------------

    def prepare_node(self, node: Node, steps: Optional[Iterable[str]] = None) -> NodeOutcome:
        """Prepare one node in its own session; failures come back as a FAILED outcome."""
        start = time.monotonic()
        self.bus.emit(NodePrepareStarted(node=node.hostname, **self._ctx()))
        session = None
        try:
            session = self._open(node)
            self.preparer.prepare(session, node, steps=steps)
        except KubebootError as e:
            log.error("%s", e)
            outcome = _failure(node.hostname, "prepare", e, start)
            self.bus.emit(NodePrepareFailed(node=node.hostname, step=outcome.step, error=str(e), **self._ctx()))
            return outcome
        finally:
            if session is not None:
                session.close()
        outcome = NodeOutcome(node=node.hostname, phase="prepare", status=OK, duration_ms=_ms(start))
        self.bus.emit(NodePrepared(node=node.hostname, duration_ms=outcome.duration_ms, **self._ctx()))
        return outcome

    def prepare_all(self, nodes: Sequence[Node]) -> Dict[str, NodeOutcome]:
        log.info("==== Preparing %d nodes ====", len(nodes))
        with ThreadPoolExecutor(max_workers=max(1, len(nodes)), thread_name_prefix="prepare") as pool:
            futures = {n.hostname: pool.submit(self.prepare_node, n) for n in nodes}
            return {name: f.result() for name, f in futures.items()}

    # ------------------ phase 2: control plane ------------------

    def init_control_plane(self, session: RemoteSession) -> JoinArtifact:
        cp = self.registry.control_plane
        log.info("==== Initializing control plane %s ====", cp.hostname)
        artifact = self.initializer.initialize(session, cp)
        self.bus.emit(ControlPlaneInitialized(node=cp.hostname, endpoint=artifact.endpoint, **self._ctx()))
        self.bus.emit(JoinArtifactIssued(
            node=cp.hostname,
            endpoint=artifact.endpoint,
            generated_at=artifact.generated_at.isoformat(),
            **self._ctx(),
        ))
        return artifact

    # ------------------ phase 3: worker join ------------------

    def join_worker(self, worker: Node) -> NodeOutcome:
        start = time.monotonic()
        self.bus.emit(WorkerJoinStarted(node=worker.hostname, **self._ctx()))
        session = None
        try:
            session = self._open(worker)
            self.transport.prepare(worker, session)
            self.transport.deliver_and_join(worker, session)
        except KubebootError as e:
            log.error("%s", e)
            outcome = _failure(worker.hostname, "join", e, start)
            self.bus.emit(WorkerJoinFailed(node=worker.hostname, step=outcome.step, error=str(e), **self._ctx()))
            return outcome
        finally:
            if session is not None:
                session.close()
        outcome = NodeOutcome(node=worker.hostname, phase="join", status=OK, duration_ms=_ms(start))
        self.bus.emit(WorkerJoined(node=worker.hostname, duration_ms=outcome.duration_ms, **self._ctx()))
        return outcome

    def join_workers(self, workers: Sequence[Node], cp_session: RemoteSession) -> List[NodeOutcome]:
        log.info("==== Joining %d workers (%s transport) ====", len(workers), self.transport.name)
        try:
            if not workers:
                return []
            self.transport.start(cp_session)
            with ThreadPoolExecutor(max_workers=len(workers), thread_name_prefix="join") as pool:
                return list(pool.map(self.join_worker, workers))
        finally:
            self.transport.finish(cp_session)

    # ------------------ phase 4: membership ------------------

    def observe(self, cp_session: RemoteSession, expected: Iterable[str]) -> Dict[str, bool]:
        log.info("==== Verifying cluster membership ====")
        result = self.membership.observe(cp_session, expected)
        self.bus.emit(MembershipObserved(
            ready=sorted(h for h, r in result.items() if r),
            not_ready=sorted(h for h, r in result.items() if not r),
            **self._ctx(),
        ))
        return result

    # ------------------ public API ------------------

    def run(self) -> BootstrapReport:
        report = BootstrapReport(failure_policy=self.settings.failure_policy)
        cp = self.registry.control_plane
        self.bus.emit(RunStarted(
            nodes=[n.hostname for n in self.registry],
            failure_policy=self.settings.failure_policy,
            **self._ctx(),
        ))
        try:
            self._run(report, cp)
        finally:
            self._summarize(report)
        return report

    def _run(self, report: BootstrapReport, cp: Node) -> None:
        prepared = self.prepare_all(list(self.registry))
        for outcome in prepared.values():
            report.add(outcome)

        if prepared[cp.hostname].status != OK:
            report.fatal = f"control plane {cp.hostname} preparation failed"
            return
        broken = [w.hostname for w in self.registry.workers if prepared[w.hostname].status != OK]
        if broken and self.settings.failure_policy == "fail-fast":
            report.fatal = f"worker preparation failed: {', '.join(broken)}"
            return

        workers = [w for w in self.registry.workers if prepared[w.hostname].status == OK]
        for name in broken:
            log.warning("[%s] skipping join, preparation failed", name)
            report.add(NodeOutcome(node=name, phase="join", status=SKIPPED, error="preparation failed"))

        start = time.monotonic()
        try:
            cp_session = self._open(cp)
        except TransportUnavailable as e:
            report.add(_failure(cp.hostname, "control-plane", e, start))
            report.fatal = str(e)
            self.bus.emit(ControlPlaneFailed(node=cp.hostname, step="connect", error=str(e), **self._ctx()))
            return

        try:
            try:
                self.init_control_plane(cp_session)
            except KubebootError as e:
                log.error("%s", e)
                outcome = _failure(cp.hostname, "control-plane", e, start)
                report.add(outcome)
                report.fatal = str(e)
                self.bus.emit(ControlPlaneFailed(node=cp.hostname, step=outcome.step, error=str(e), **self._ctx()))
                return
            report.add(NodeOutcome(node=cp.hostname, phase="control-plane", status=OK, duration_ms=_ms(start)))

            try:
                for outcome in self.join_workers(workers, cp_session):
                    report.add(outcome)
            except (KubebootError, OSError, ValueError) as e:
                # Only the control-plane side of the hand-off can end up here.
                log.error("[%s] join artifact hand-off failed: %s", cp.hostname, e)
                report.fatal = f"join artifact hand-off failed: {e}"
                return

            report.membership = self.observe(
                cp_session, [cp.hostname] + [w.hostname for w in workers]
            )
        finally:
            cp_session.close()

    def _summarize(self, report: BootstrapReport) -> None:
        ok = sum(1 for o in report.outcomes if o.status == OK)
        skipped = sum(1 for o in report.outcomes if o.status == SKIPPED)
        self.bus.emit(BootstrapSummary(
            ok=ok,
            failed=len(report.failed()),
            skipped=skipped,
            exit_code=report.exit_code,
            **self._ctx(),
        ))
        if report.fatal:
            log.error("Bootstrap aborted: %s", report.fatal)
        log.info("Bootstrap finished: %s (exit %d)", report.summary(), report.exit_code)

    def status(self) -> Dict[str, bool]:
        """Membership check only."""
        cp = self.registry.control_plane
        session = self._open(cp)
        try:
            return self.observe(session, [n.hostname for n in self.registry])
        finally:
            session.close()

    def prepare_only(self, hostname: str, steps: Optional[Iterable[str]] = None) -> NodeOutcome:
        """Re-run preparation on one node, e.g. after fixing what made it fail."""
        return self.prepare_node(self.registry.get(hostname), steps=steps)
