# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/helm/release.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from packaging.version import InvalidVersion, Version

from chartops.errors import ChartInvocationError

log = logging.getLogger("chartops")

# "<chart name>-<semver>" as printed by `helm list`, e.g. cert-manager-v1.12.0
_CHART_RE = re.compile(r"^(?P<name>.+)-(?P<version>v?\d+(?:\.\d+)*(?:[-+].*)?)$")


def parse_version(raw: Optional[str]) -> Optional[Version]:
    if not raw:
        return None
    try:
        return Version(raw)
    except InvalidVersion:
        log.warning("unable to parse version '%s'", raw)
        return None


def split_chart(chart: str) -> tuple[str, Optional[str]]:
    m = _CHART_RE.match(chart or "")
    if not m:
        return chart, None
    return m.group("name"), m.group("version")


@dataclass(frozen=True)
class ReleaseInfo:
    name: str
    namespace: str
    revision: int
    chart: str
    app_version: str
    status: str

    @classmethod
    def from_helm(cls, d: Dict[str, Any]) -> "ReleaseInfo":
        return cls(
            name=d.get("name", ""),
            namespace=d.get("namespace", ""),
            revision=int(d.get("revision") or 0),
            chart=d.get("chart", ""),
            app_version=d.get("app_version", ""),
            status=d.get("status", ""),
        )

    @property
    def chart_version(self) -> Optional[Version]:
        return parse_version(split_chart(self.chart)[1])


@dataclass(frozen=True)
class HistoryRow:
    revision: int
    updated: str
    status: str
    chart: str
    app_version: str
    description: str

    @classmethod
    def from_helm(cls, d: Dict[str, Any]) -> "HistoryRow":
        return cls(
            revision=int(d.get("revision") or 0),
            updated=d.get("updated", ""),
            status=d.get("status", ""),
            chart=d.get("chart", ""),
            app_version=d.get("app_version", ""),
            description=d.get("description", ""),
        )


def latest_successful_deployment(history: List[HistoryRow]) -> HistoryRow:
    """Return the most recent revision helm reports as `deployed`."""
    for row in reversed(history):
        if row.status == "deployed":
            return row

    chart = history[-1].chart if history else "unknown"
    raise ChartInvocationError(f"No succeed revision found for chart `{chart}`")
