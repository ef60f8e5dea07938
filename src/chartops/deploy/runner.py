# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/runner.py
from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
import traceback
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from chartops.config.models import HelmAction
from chartops.errors import CommandError, WorkerPanic
from chartops.observers.events import (
    DeploySummary,
    DiffRendered,
    LevelFailed,
    LevelStarted,
    LevelSucceeded,
)
from chartops.utils.command import CommandKiller
from .context import DeployContext
from .executor import ChartExecutor
from .planner import validate_plan

log = logging.getLogger("chartops")


@dataclass
class DeployOptions:
    dry_run: bool = False
    # per chart deadline handed to the chart's helm calls; None keeps ctx.killer
    chart_timeout_seconds: Optional[float] = None


@dataclass
class ChartOutcome:
    name: str
    namespace: str
    level: int
    status: str                 # "OK" | "FAILED" | "SKIPPED"
    duration_ms: int = 0
    error: Optional[CommandError] = None


@dataclass
class DeployReport:
    outcomes: List[ChartOutcome] = field(default_factory=list)

    def add(self, outcome: ChartOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def errors(self) -> List[CommandError]:
        return [o.error for o in self.outcomes if o.error is not None]

    @property
    def ok(self) -> bool:
        return self.count("FAILED") == 0

    def summary(self) -> str:
        return f"OK={self.count('OK')} FAILED={self.count('FAILED')} SKIPPED={self.count('SKIPPED')}"


def _run_chart(executor: ChartExecutor, ctx: DeployContext) -> Tuple[int, Optional[CommandError]]:
    """
    Worker body. Never raises: a chart error is returned as is, anything
    else becomes a WorkerPanic so it is reported like any other failure.
    """
    threading.current_thread().name = f"chart-{executor.name}"
    t0 = time.time()
    try:
        executor.run(ctx)
        error = None
    except CommandError as e:
        error = e
    except Exception as e:
        error = WorkerPanic(
            f"Worker of chart {executor.name} panicked: {type(e).__name__}: {e}",
            traceback.format_exc(),
        )
    return int((time.time() - t0) * 1000), error


class ParallelLevelRunner:
    """
    Runs a plan level by level. Charts of one level run concurrently, one
    thread each, and every one of them is joined before the level is judged.
    The first failed level stops the plan.

    `report` is filled as levels complete, so it is usable even when `run`
    raises.
    """

    def __init__(self, ctx: DeployContext, options: Optional[DeployOptions] = None):
        self.ctx = ctx
        self.options = options or DeployOptions()
        self.report = DeployReport()

    def _chart_ctx(self) -> DeployContext:
        if self.options.chart_timeout_seconds is None:
            return self.ctx.for_chart()
        return self.ctx.for_chart(CommandKiller.from_timeout(self.options.chart_timeout_seconds))

    # ------------------------------------------------------------
    # Diff preview
    # ------------------------------------------------------------
    def render_diffs(self, index: int, level: Sequence[ChartExecutor]) -> None:
        for executor in level:
            chart = executor.chart
            if chart.action != HelmAction.DEPLOY:
                continue
            try:
                diff = self.ctx.helm.upgrade_diff(chart)
            except CommandError as e:
                log.warning("unable to render diff of %s: %s", chart.name, e)
                continue
            changed = bool(diff.strip())
            log.info("diff of %s:\n%s", chart.name, diff if changed else "(no changes)")
            self.ctx.emit(DiffRendered, level=index, name=chart.name, changed=changed)

    # ------------------------------------------------------------
    # One level
    # ------------------------------------------------------------
    def run_level(self, index: int, level: Sequence[ChartExecutor]) -> List[ChartOutcome]:
        names = [e.name for e in level]
        self.ctx.emit(LevelStarted, level=index, charts=names, dry_run=self.options.dry_run)
        log.info("level %d: %s", index, ", ".join(names) or "(empty)")
        t0 = time.time()

        # preview completes for the whole level before any chart mutates
        self.render_diffs(index, level)

        if self.options.dry_run:
            outcomes = [
                ChartOutcome(name=e.name, namespace=e.chart.get_namespace(), level=index, status="SKIPPED")
                for e in level
            ]
            self.ctx.emit(LevelSucceeded, level=index, duration_ms=int((time.time() - t0) * 1000))
            return outcomes

        outcomes: List[ChartOutcome] = []
        if level:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=len(level),
                thread_name_prefix=f"chartops-level-{index}",
            ) as pool:
                futures = [pool.submit(_run_chart, e, self._chart_ctx()) for e in level]
                concurrent.futures.wait(futures)

            # submission order decides which error is reported first
            for executor, fut in zip(level, futures):
                try:
                    duration_ms, error = fut.result()
                except Exception as e:
                    duration_ms, error = 0, WorkerPanic(
                        f"Worker of chart {executor.name} panicked: {type(e).__name__}: {e}"
                    )
                outcomes.append(
                    ChartOutcome(
                        name=executor.name,
                        namespace=executor.chart.get_namespace(),
                        level=index,
                        status="FAILED" if error else "OK",
                        duration_ms=duration_ms,
                        error=error,
                    )
                )

        failed = [o for o in outcomes if o.error is not None]
        if failed:
            for o in failed:
                log.error("level %d: chart %s failed: %s", index, o.name, o.error)
            self.ctx.emit(LevelFailed, level=index, failed=[o.name for o in failed], error=str(failed[0].error))
        else:
            self.ctx.emit(LevelSucceeded, level=index, duration_ms=int((time.time() - t0) * 1000))
        return outcomes

    # ------------------------------------------------------------
    # Whole plan
    # ------------------------------------------------------------
    def run(self, levels: Sequence[Sequence[ChartExecutor]]) -> DeployReport:
        """
        Execute every level in order. Raises the first error of the first
        failed level; charts of later levels are reported as SKIPPED.
        """
        validate_plan([[e.name for e in level] for level in levels], bus=self.ctx.bus, run_ctx=self.ctx.run_ctx)

        first_error: Optional[CommandError] = None
        try:
            for index, level in enumerate(levels):
                if first_error is not None:
                    for e in level:
                        self.report.add(ChartOutcome(
                            name=e.name, namespace=e.chart.get_namespace(), level=index, status="SKIPPED",
                        ))
                    continue

                for outcome in self.run_level(index, level):
                    self.report.add(outcome)
                    if outcome.error is not None and first_error is None:
                        first_error = outcome.error
        finally:
            self.ctx.emit(
                DeploySummary,
                ok=self.report.count("OK"),
                failed=self.report.count("FAILED"),
                skipped=self.report.count("SKIPPED"),
            )
            log.info("deploy finished: %s", self.report.summary())

        if first_error is not None:
            raise first_error
        return self.report


def deploy_chart_levels(
    levels: Sequence[Sequence[ChartExecutor]],
    ctx: DeployContext,
    options: Optional[DeployOptions] = None,
) -> DeployReport:
    return ParallelLevelRunner(ctx, options).run(levels)
