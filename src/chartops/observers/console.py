# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/observers/console.py
import typer

from .events import (
    BaseEvent,
    ChartFailed,
    ChartSucceeded,
    DeploySummary,
    DiffRendered,
    LevelFailed,
    LevelStarted,
    LevelSucceeded,
    PlanFailed,
)


class ConsoleObserver:
    """
    Operator facing progress: one line per level and per chart outcome.
    Phase level events are left to the log file.
    """

    def _line(self, event: BaseEvent):
        if isinstance(event, LevelStarted):
            mode = " (diff only)" if event.dry_run else ""
            return f"[level {event.level}] {', '.join(event.charts) or '-'}{mode}", None
        if isinstance(event, DiffRendered):
            return f"  ~ {event.name}: {'changes' if event.changed else 'up to date'}", typer.colors.YELLOW
        if isinstance(event, ChartSucceeded):
            return f"  ✓ {event.name} ({event.duration_ms / 1000:.1f}s)", typer.colors.GREEN
        if isinstance(event, ChartFailed):
            return f"  ✗ {event.name} failed in {event.phase}: {event.error.splitlines()[0] if event.error else ''}", typer.colors.RED
        if isinstance(event, LevelSucceeded):
            return f"[level {event.level}] done in {event.duration_ms / 1000:.1f}s", None
        if isinstance(event, LevelFailed):
            return f"[level {event.level}] failed: {', '.join(event.failed)}", typer.colors.RED
        if isinstance(event, PlanFailed):
            return f"plan rejected: {event.error}", typer.colors.RED
        if isinstance(event, DeploySummary):
            return f"run {event.run_id}: OK={event.ok} FAILED={event.failed} SKIPPED={event.skipped}", None
        return None, None

    def notify(self, event: BaseEvent) -> None:
        line, color = self._line(event)
        if line is not None:
            typer.secho(line, fg=color)
