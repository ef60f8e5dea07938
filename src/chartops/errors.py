# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/errors.py
from __future__ import annotations

from typing import Optional


class CommandError(RuntimeError):
    """
    Base class for every failure raised while driving a chart.

    `message` is safe to show to an operator, `detail` carries the raw
    output (stderr, stack, ...) of the underlying command when there is one.
    """

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n{self.detail}"
        return self.message


class ValuesFileMissing(CommandError):
    """A values file referenced by a chart does not exist locally."""


class ChartInvocationError(CommandError):
    """The helm binary failed (install, upgrade, uninstall, history, ...)."""


class ClusterApiError(CommandError):
    """The cluster API (kubectl) failed."""


class CrdUpdateError(ClusterApiError):
    """CRDs could not be applied ahead of a chart upgrade."""


class HealthCheckFailed(CommandError):
    """An installation checker reported an unhealthy chart."""


class WorkerPanic(CommandError):
    """A chart worker thread died on an unexpected exception."""


class PlanError(ValueError):
    pass


class DuplicateReleaseError(PlanError):
    pass
