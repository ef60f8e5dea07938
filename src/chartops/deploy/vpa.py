# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/vpa.py

from __future__ import annotations

import logging
from typing import Optional, Sequence

import yaml

from chartops.config.models import ChartDescriptor, ChartValuesGenerated, HelmAction, VpaSpec
from chartops.helm.interface import IHelm
from chartops.utils.command import CommandKiller

log = logging.getLogger("chartops")

VPA_TIMEOUT_SECONDS = 15


def companion_release_name(chart_name: str) -> str:
    return f"vpa-{chart_name}"


def render_vpa_values(specs: Sequence[VpaSpec]) -> str:
    return yaml.safe_dump({"vpa_config": [s.to_helm_values() for s in specs]}, sort_keys=False)


class VpaReconciler:
    """
    Keeps the "vpa-<chart>" companion release in line with the chart's
    current VPA specs:
      - specs present (and parent not destroyed) → install / upgrade
      - no specs → uninstall whatever was applied by a previous run
    """

    def __init__(self, *, helm: IHelm, chart_path: str):
        self.helm = helm
        self.chart_path = chart_path

    def companion_chart(self, parent: ChartDescriptor, specs: Sequence[VpaSpec]) -> ChartDescriptor:
        name = companion_release_name(parent.name)
        enabled = bool(specs) and parent.action != HelmAction.DESTROY
        return ChartDescriptor(
            name=name,
            path=self.chart_path if enabled else ".",
            namespace=parent.namespace,
            custom_namespace=parent.custom_namespace,
            action=HelmAction.DEPLOY if enabled else HelmAction.DESTROY,
            yaml_files_content=(
                [ChartValuesGenerated.for_chart(name, render_vpa_values(specs))] if enabled else []
            ),
            timeout_seconds=VPA_TIMEOUT_SECONDS,
        )

    def reconcile(
        self,
        parent: ChartDescriptor,
        specs: Sequence[VpaSpec],
        killer: Optional[CommandKiller] = None,
    ) -> HelmAction:
        companion = self.companion_chart(parent, specs)
        if companion.action == HelmAction.DEPLOY:
            log.info("applying %s (%d VPA policies)", companion.name, len(specs))
            self.helm.upgrade(companion, killer)
        else:
            log.debug("sweeping %s if present", companion.name)
            self.helm.uninstall(companion, killer)
        return companion.action
