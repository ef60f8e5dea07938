# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from chartops.config.loader import load_config
from chartops.config.models import PlanConfig
from chartops.deploy.planner import build_context, build_plan
from chartops.deploy.runner import DeployOptions, ParallelLevelRunner
from chartops.errors import CommandError, PlanError
from chartops.helm.cli_runner import HelmCliRunner
from chartops.helm.release import latest_successful_deployment

from chartops.logging.log import events_file, init_logging
from chartops.observers.console import ConsoleObserver
from chartops.observers.dispatcher import EventBus
from chartops.observers.logger import LoggerObserver
from chartops.observers.jsonfile import JsonFileObserver
from chartops.observers.events import new_ctx


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="chartops: parallel helm chart deployment")


def _load(plan: str) -> PlanConfig:
    try:
        return load_config(plan)
    except PlanError as e:
        typer.secho(f"Invalid plan: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


def _run(plan: str, *, dry_run: bool, verbose: bool, kubeconfig: Optional[str],
         chart_timeout: Optional[float], events: bool) -> None:
    logger, run_id, log_path = init_logging(verbose=verbose)

    typer.echo("")
    typer.secho("chartops " + ("diff" if dry_run else "deploy") + " started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    cfg = _load(plan)

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(events_file(log_path)),
    ]
    if events:
        observers.append(ConsoleObserver())
    bus = EventBus(observers=observers)
    run_ctx = new_ctx(env=cfg.environment, context=cfg.context, run_id=run_id)

    try:
        levels = build_plan(cfg, bus=bus, run_ctx=run_ctx)
    except PlanError as e:
        typer.secho(f"Invalid plan: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    ctx = build_context(cfg, kubeconfig=kubeconfig, bus=bus, run_ctx=run_ctx)
    runner = ParallelLevelRunner(
        ctx,
        DeployOptions(dry_run=dry_run, chart_timeout_seconds=chart_timeout),
    )

    try:
        runner.run(levels)
    except CommandError as e:
        typer.secho(f"\nDeploy failed: {e.message}", fg=typer.colors.RED, err=True)
        typer.echo(runner.report.summary())
        raise typer.Exit(code=1)

    typer.secho(f"\n{runner.report.summary()}", fg=typer.colors.GREEN)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def deploy(
    plan: str = typer.Argument(..., help="Deployment plan YAML"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Render diffs only"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    chart_timeout: Optional[float] = typer.Option(
        None, "--chart-timeout", help="Abort a chart's helm calls after N seconds",
    ),
    events: bool = typer.Option(False, "--events", help="Print lifecycle events"),
):
    _run(plan, dry_run=dry_run, verbose=verbose, kubeconfig=kubeconfig,
         chart_timeout=chart_timeout, events=events)


@app.command()
def diff(
    plan: str = typer.Argument(..., help="Deployment plan YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
):
    _run(plan, dry_run=True, verbose=verbose, kubeconfig=kubeconfig,
         chart_timeout=None, events=False)


@app.command()
def validate(plan: str = typer.Argument(..., help="Deployment plan YAML")):
    cfg = _load(plan)
    try:
        levels = build_plan(cfg)
    except PlanError as e:
        typer.secho(f"Invalid plan: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    typer.echo(f"{Path(plan).name}: {len(levels)} level(s)")
    for idx, level in enumerate(levels):
        typer.echo(f"  [{idx}] {len(level)} chart(s): {', '.join(e.name for e in level)}")


@app.command()
def history(
    release: str = typer.Argument(..., help="Helm release name"),
    namespace: str = typer.Option(..., "--namespace", "-n"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
):
    helm = HelmCliRunner(kubeconfig=kubeconfig, kube_context=context)
    try:
        row = latest_successful_deployment(helm.history(release, namespace))
    except CommandError as e:
        typer.secho(e.message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.echo(f"{release}: revision {row.revision} ({row.chart}, app {row.app_version}) updated {row.updated}")


if __name__ == "__main__":
    app()
