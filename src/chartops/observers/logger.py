# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent, ChartFailed, ChartPhaseCompleted, LevelFailed, PlanFailed

_ERRORS = (ChartFailed, LevelFailed, PlanFailed)
_NOISY = (ChartPhaseCompleted,)


class LoggerObserver:
    """Mirror events into a `logging` logger; failures at ERROR, phase steps at DEBUG."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, _ERRORS):
            level = logging.ERROR
        elif isinstance(event, _NOISY):
            level = logging.DEBUG
        else:
            level = logging.INFO

        fields = {k: v for k, v in event.dict().items() if k not in ("ts", "env", "context")}
        run_id = fields.pop("run_id", "")
        msg = ", ".join(f"{k}={v}" for k, v in fields.items())
        self.logger.log(level, "[EVENT %s] %s: %s", run_id[:8], type(event).__name__, msg)
