# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/planner.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from chartops.config.models import ChartEntry, PlanConfig
from chartops.errors import DuplicateReleaseError
from chartops.helm.backup import BackupManager
from chartops.helm.cli_runner import HelmCliRunner
from chartops.kube.client import load_api_client
from chartops.kube.kubectl import KubectlRunner

# Observer bits
from chartops.observers.dispatcher import EventBus
from chartops.observers.events import PlanFailed, PlanValidated, new_ctx
from .checkers import DeploymentReadyChecker
from .context import DeployContext
from .executor import ChartExecutor, CommonChart, ConfigMapRolloutChart
from .vpa import VpaReconciler

log = logging.getLogger("chartops")


def validate_plan(
    levels: Sequence[Sequence[str]],
    bus: Optional[EventBus] = None,
    run_ctx: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Release names identify helm releases, so each may appear only once in
    the whole plan. Emits PlanValidated / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(env="dev", context=None)
    try:
        seen: Dict[str, int] = {}
        for idx, level in enumerate(levels):
            for name in level:
                if name in seen:
                    raise DuplicateReleaseError(
                        f"Release '{name}' is declared more than once (levels {seen[name]} and {idx})"
                    )
                seen[name] = idx

        if bus:
            bus.emit(PlanValidated(levels=[list(level) for level in levels], **ctx))

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise


def build_executor(entry: ChartEntry) -> ChartExecutor:
    checker = None
    if entry.health_check:
        hc = entry.health_check
        checker = DeploymentReadyChecker(
            hc.namespace or entry.get_namespace(),
            deployments=hc.deployments,
            selector=hc.selector,
            timeout_seconds=hc.timeout_seconds,
        )

    if entry.configmap_rollout:
        cr = entry.configmap_rollout
        return ConfigMapRolloutChart(
            entry,
            configmap=cr.configmap,
            workload=cr.workload,
            namespace=cr.namespace,
            checker=checker,
            vpa=entry.vpa,
        )
    return CommonChart(entry, checker=checker, vpa=entry.vpa)


def build_plan(
    cfg: PlanConfig,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[Dict[str, Any]] = None,
) -> List[List[ChartExecutor]]:
    """Validated levels of executors, in plan order."""
    ctx = run_ctx or new_ctx(env=cfg.environment, context=cfg.context)
    validate_plan([[c.name for c in level] for level in cfg.levels], bus=bus, run_ctx=ctx)
    return [[build_executor(c) for c in level] for level in cfg.levels]


def build_context(
    cfg: PlanConfig,
    *,
    kubeconfig: Optional[str] = None,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[Dict[str, Any]] = None,
) -> DeployContext:
    """
    Wire the real helm / kubectl runners for a plan. The python cluster
    client is only loaded when a chart declares a health check.
    """
    kubeconfig = kubeconfig or cfg.kubeconfig
    helm = HelmCliRunner(kubeconfig=kubeconfig, kube_context=cfg.context)
    kubectl = KubectlRunner(kubeconfig=kubeconfig, context=cfg.context)

    kube_client = None
    if any(c.health_check for c in cfg.charts()):
        log.debug("loading cluster client for health checks")
        kube_client = load_api_client(kubeconfig, cfg.context)

    return DeployContext(
        helm=helm,
        kubectl=kubectl,
        backups=BackupManager(
            helm=helm,
            kubectl=kubectl,
            backup_dir=Path(cfg.backup_dir) if cfg.backup_dir else None,
        ),
        vpa=VpaReconciler(helm=helm, chart_path=cfg.vpa_chart_path),
        kube_client=kube_client,
        bus=bus or EventBus(),
        run_ctx=run_ctx or new_ctx(env=cfg.environment, context=cfg.context),
    )
