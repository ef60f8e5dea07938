# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import List, Optional, Protocol

from packaging.version import Version

from chartops.config.models import ChartDescriptor
from chartops.utils.command import CommandKiller
from .release import HistoryRow, ReleaseInfo


class IHelm(Protocol):
    def get_release(self, name: str, namespace: str) -> Optional[ReleaseInfo]: ...

    def get_chart_version(self, name: str, namespace: str) -> Optional[Version]: ...

    def history(self, name: str, namespace: str) -> List[HistoryRow]: ...

    def upgrade(self, chart: ChartDescriptor, killer: Optional[CommandKiller] = None) -> None: ...

    def uninstall(self, chart: ChartDescriptor, killer: Optional[CommandKiller] = None) -> None: ...

    def uninstall_if_breaking_version(self, chart: ChartDescriptor) -> bool: ...

    def upgrade_diff(self, chart: ChartDescriptor) -> str: ...
