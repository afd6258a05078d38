# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str                 # ISO timestamp
    run_id: str             # correlates all events in a single bootstrap invocation
    strategy: str           # join transport: push / pull

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(strategy: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "strategy": strategy,
    }


@dataclass(frozen=True)
class RunStarted(BaseEvent):
    nodes: List[str]
    failure_policy: str


# ---------------------------------------------------------------------
# Node preparation
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodePrepareStarted(BaseEvent):
    node: str

@dataclass(frozen=True)
class NodePrepared(BaseEvent):
    node: str
    duration_ms: int

@dataclass(frozen=True)
class NodePrepareFailed(BaseEvent):
    node: str
    step: Optional[str]
    error: str


# ---------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ControlPlaneInitialized(BaseEvent):
    node: str
    endpoint: str

@dataclass(frozen=True)
class ControlPlaneFailed(BaseEvent):
    node: str
    step: Optional[str]
    error: str

@dataclass(frozen=True)
class JoinArtifactIssued(BaseEvent):
    node: str
    endpoint: str
    generated_at: str


# ---------------------------------------------------------------------
# Worker join
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WorkerJoinStarted(BaseEvent):
    node: str

@dataclass(frozen=True)
class WorkerJoined(BaseEvent):
    node: str
    duration_ms: int

@dataclass(frozen=True)
class WorkerJoinFailed(BaseEvent):
    node: str
    step: Optional[str]
    error: str


# ---------------------------------------------------------------------
# Membership & summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MembershipObserved(BaseEvent):
    ready: List[str]
    not_ready: List[str]

@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    ok: int
    failed: int
    skipped: int
    exit_code: int
