# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from kubeboot.bootstrap.node.preparer import STEPS
from kubeboot.bootstrap.orchestrator import FAILED, Orchestrator
from kubeboot.config.loader import load_config
from kubeboot.config.models import BootstrapConfig
from kubeboot.errors import ConfigurationMissing, KubebootError
from kubeboot.logging.log import init_logging
from kubeboot.observers.console import ConsoleObserver
from kubeboot.observers.jsonfile import JsonFileObserver
from kubeboot.observers.logger import LoggerObserver
from kubeboot.utils.ssh_runner import open_runner


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bootstrap a kubeadm cluster (one control plane, N workers) over SSH")


def _load(config: Path) -> BootstrapConfig:
    # Configuration is checked before any connection is attempted.
    try:
        return load_config(config)
    except ConfigurationMissing as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def _orchestrator(cfg: BootstrapConfig, *, debug: bool, log_dir: Optional[Path]) -> Orchestrator:
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=debug)

    typer.echo("")
    typer.secho("kubeboot", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  Strategy : {cfg.cluster.join_strategy} / {cfg.cluster.failure_policy}")
    typer.echo("")

    observers = [
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    return Orchestrator(cfg, session_factory=open_runner, observers=observers, run_id=run_id)


CONFIG_ARG = typer.Argument(Path(".env"), help="Settings file (.env style or YAML)")
DEBUG_OPT = typer.Option(False, "--debug", help="Echo DEBUG logs to the console")
LOG_DIR_OPT = typer.Option(None, "--log-dir", help="Where run logs go (default ~/.kubeboot/logs)")


@app.command()
def up(
    config: Path = CONFIG_ARG,
    debug: bool = DEBUG_OPT,
    log_dir: Optional[Path] = LOG_DIR_OPT,
):
    """Prepare every node, initialize the control plane and join the workers."""
    cfg = _load(config)
    report = _orchestrator(cfg, debug=debug, log_dir=log_dir).run()

    typer.echo("")
    for outcome in report.outcomes:
        line = f"  {outcome.node:<20} {outcome.phase:<14} {outcome.status}"
        if outcome.step:
            line += f" ({outcome.step})"
        typer.secho(line, fg=typer.colors.RED if outcome.status == FAILED else None)
    if report.fatal:
        typer.secho(f"Aborted: {report.fatal}", fg=typer.colors.RED, bold=True)
    typer.secho(f"Summary: {report.summary()}", bold=True)
    raise typer.Exit(report.exit_code)


@app.command()
def prepare(
    config: Path = CONFIG_ARG,
    node: str = typer.Option(..., "--node", help="Hostname of the node to prepare"),
    step: Optional[List[str]] = typer.Option(None, "--step", help=f"Only these steps: {', '.join(STEPS)}"),
    debug: bool = DEBUG_OPT,
    log_dir: Optional[Path] = LOG_DIR_OPT,
):
    """Re-run preparation on a single node."""
    cfg = _load(config)
    if step:
        unknown = [s for s in step if s not in STEPS]
        if unknown:
            raise typer.BadParameter(
                f"Unknown steps: {', '.join(unknown)}\nValid steps: {', '.join(STEPS)}"
            )
    orch = _orchestrator(cfg, debug=debug, log_dir=log_dir)
    try:
        outcome = orch.prepare_only(node, steps=step or None)
    except KeyError:
        typer.secho(f"Unknown node: {node}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"{outcome.node}: {outcome.status}" + (f" ({outcome.step})" if outcome.step else ""))
    raise typer.Exit(0 if outcome.status != FAILED else 1)


@app.command()
def status(
    config: Path = CONFIG_ARG,
    debug: bool = DEBUG_OPT,
    log_dir: Optional[Path] = LOG_DIR_OPT,
):
    """Show which configured nodes the control plane reports as Ready."""
    cfg = _load(config)
    orch = _orchestrator(cfg, debug=debug, log_dir=log_dir)
    try:
        ready = orch.status()
    except KubebootError as e:
        typer.secho(f"Status check failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    for name, ok in ready.items():
        typer.secho(f"  {name:<20} {'Ready' if ok else 'NotReady'}", fg=None if ok else typer.colors.YELLOW)
    raise typer.Exit(0 if ready and all(ready.values()) else 1)


if __name__ == "__main__":
    app()
