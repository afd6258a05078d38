# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/observers/console.py
import typer

from .events import BaseEvent

_FAILURES = ("NodePrepareFailed", "ControlPlaneFailed", "WorkerJoinFailed")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "strategy"))
        typer.secho(
            f"[{d['ts']}] {k} {data}",
            fg=typer.colors.RED if k in _FAILURES else None,
        )
