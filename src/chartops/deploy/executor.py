# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/executor.py
from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from chartops.config.models import ChartDescriptor, HelmAction, UpgradeRetry, VpaSpec
from chartops.errors import (
    ChartInvocationError,
    ClusterApiError,
    CommandError,
    CrdUpdateError,
    ValuesFileMissing,
)
from chartops.observers.events import (
    ChartFailed,
    ChartPhaseCompleted,
    ChartStarted,
    ChartSucceeded,
)
from chartops.utils.retry import call_with_retry
from .checkers import AlwaysPassChecker, InstallationChecker
from .context import DeployContext

log = logging.getLogger("chartops")

# Opaque per-run state threaded from one phase to the next.
RuntimePayload = Dict[str, Any]


class ChartState(str, Enum):
    INIT = "init"
    PREREQUISITES_CHECKED = "prerequisites_checked"
    PRE_EXECED = "pre_execed"
    EXECED = "execed"
    POST_EXECED = "post_execed"
    FAILED = "failed"


class ChartExecutor(ABC):
    """
    Four phase lifecycle shared by every chart family:

        check_prerequisites -> pre_exec -> exec -> post_exec

    The first phase raising moves the executor to FAILED, runs
    `on_deploy_failure` for diagnostics, then re-raises the original error.
    """

    def __init__(self) -> None:
        self.state = ChartState.INIT

    @property
    @abstractmethod
    def chart(self) -> ChartDescriptor: ...

    @property
    def name(self) -> str:
        return self.chart.name

    @abstractmethod
    def check_prerequisites(self, ctx: DeployContext) -> Optional[RuntimePayload]: ...

    @abstractmethod
    def pre_exec(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> RuntimePayload: ...

    @abstractmethod
    def exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload: ...

    @abstractmethod
    def post_exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload: ...

    @abstractmethod
    def on_deploy_failure(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> None: ...

    def run(self, ctx: DeployContext) -> RuntimePayload:
        chart = self.chart
        ctx.emit(ChartStarted, name=chart.name, namespace=chart.get_namespace(), action=chart.action.value)
        t0 = time.time()

        payload: Optional[RuntimePayload] = None
        phase = "check_prerequisites"
        try:
            payload = self.check_prerequisites(ctx)
            self._advance(ctx, ChartState.PREREQUISITES_CHECKED, phase)

            phase = "pre_exec"
            payload = self.pre_exec(ctx, payload)
            self._advance(ctx, ChartState.PRE_EXECED, phase)

            phase = "exec"
            payload = self.exec(ctx, payload)
            self._advance(ctx, ChartState.EXECED, phase)

            phase = "post_exec"
            payload = self.post_exec(ctx, payload)
            self._advance(ctx, ChartState.POST_EXECED, phase)
        except Exception as e:
            self.state = ChartState.FAILED
            log.error("chart %s failed during %s: %s", chart.name, phase, e)
            ctx.emit(ChartFailed, name=chart.name, phase=phase, error=str(e))
            self.on_deploy_failure(ctx, payload)
            raise

        ctx.emit(ChartSucceeded, name=chart.name, duration_ms=int((time.time() - t0) * 1000))
        return payload

    def _advance(self, ctx: DeployContext, state: ChartState, phase: str) -> None:
        self.state = state
        log.debug("chart %s: %s done", self.chart.name, phase)
        ctx.emit(ChartPhaseCompleted, name=self.chart.name, phase=phase)


class CommonChart(ChartExecutor):
    """
    Plain helm chart: install/upgrade, destroy or skip, followed by a health
    check and the VPA companion reconciliation.
    """

    def __init__(
        self,
        chart: ChartDescriptor,
        checker: Optional[InstallationChecker] = None,
        vpa: Optional[List[VpaSpec]] = None,
    ):
        super().__init__()
        self._chart = chart
        self.checker = checker or AlwaysPassChecker()
        self.vpa = list(vpa or [])

    @property
    def chart(self) -> ChartDescriptor:
        return self._chart

    # ------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------
    def check_prerequisites(self, ctx: DeployContext) -> Optional[RuntimePayload]:
        for f in self.chart.values_files:
            if not Path(f).exists():
                raise ValuesFileMissing(f"Values file {f} of chart {self.chart.name} doesn't exist")
        return None

    def pre_exec(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> RuntimePayload:
        payload = payload if payload is not None else {}
        if self.chart.k8s_selector:
            deleted = ctx.kubectl.delete_crash_looping_pods(self.chart.get_namespace(), self.chart.k8s_selector)
            if deleted:
                log.info("deleted %d crash looping pod(s) of %s", len(deleted), self.chart.name)
        return payload

    def exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        action = self.chart.action
        if action == HelmAction.DEPLOY:
            return self._deploy(ctx, payload)
        if action == HelmAction.DESTROY:
            return self._destroy(ctx, payload)
        log.info("chart %s is set to skip", self.chart.name)
        return payload

    def post_exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        health_error: Optional[CommandError] = None
        if self.chart.action != HelmAction.DESTROY:
            try:
                self.checker.verify_installation(ctx.kube_client)
            except CommandError as e:
                health_error = e

        ctx.vpa.reconcile(self.chart, self.vpa, ctx.killer)

        if health_error is not None:
            raise health_error
        return payload

    def on_deploy_failure(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> None:
        namespace = self.chart.get_namespace()
        try:
            events = ctx.kubectl.get_events(namespace)
        except CommandError as e:
            log.error("unable to fetch events of namespace %s: %s", namespace, e)
            return
        log.info("events of namespace %s after %s failure:\n%s", namespace, self.chart.name, events)

    # ------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------
    def _deploy(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        chart = self.chart
        namespace = chart.get_namespace()

        if chart.reinstall_threshold() is not None:
            try:
                if ctx.helm.uninstall_if_breaking_version(chart):
                    log.info("uninstalled %s, installed version was below %s",
                             chart.name, chart.reinstall_if_installed_version_below)
            except CommandError as e:
                log.warning("error while trying to uninstall %s before reinstall: %s", chart.name, e)

        try:
            release = ctx.helm.get_release(chart.name, namespace)
        except CommandError as e:
            log.warning("unable to read installed release of %s, assuming fresh install: %s", chart.name, e)
            release = None

        if chart.skip_if_already_installed and release is not None:
            log.info("chart %s is already installed, skipping", chart.name)
            return payload

        installed_version = release.chart_version if release else None
        record = ctx.backups.prepare(chart, installed_version)

        try:
            self._update_crds(ctx)
            self._upgrade(ctx)
        except Exception:
            ctx.backups.discard(record)
            raise

        if record.is_backupable:
            try:
                patched = ctx.backups.restore(chart, record)
                log.info("restored backup of %s onto %d object(s)", chart.name, patched)
            except (CommandError, OSError, yaml.YAMLError) as e:
                log.warning("error while restoring backup of %s: %s", chart.name, e)
                ctx.backups.discard(record)

        if chart.recreate_pods and chart.k8s_selector:
            log.info("recreating pods of %s (%s)", chart.name, chart.k8s_selector)
            ctx.kubectl.delete_pods(namespace, chart.k8s_selector)

        return payload

    def _upgrade(self, ctx: DeployContext) -> None:
        retry = self.chart.upgrade_retry or UpgradeRetry()

        def on_retry(attempt: int, e: Exception) -> None:
            log.warning("upgrade of %s failed (attempt %d/%d): %s",
                        self.chart.name, attempt, retry.nb_retry + 1, e)

        call_with_retry(
            lambda: ctx.helm.upgrade(self.chart, ctx.killer),
            retries=retry.nb_retry,
            delay=retry.delay_ms / 1000,
            retry_on=(ChartInvocationError,),
            on_retry=on_retry,
        )

    def _update_crds(self, ctx: DeployContext) -> None:
        crds = self.chart.crds_update
        if crds is None or not crds.path:
            return
        path = Path(crds.path)
        if not path.is_absolute():
            path = Path(self.chart.path) / path
        try:
            ctx.kubectl.apply_file(str(path), server_side=True, force_conflicts=True)
        except ClusterApiError as e:
            raise CrdUpdateError(f"Unable to update CRDs of chart {self.chart.name}", e.detail) from e

    def _destroy(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        crds = self.chart.crds_update.resources if self.chart.crds_update else []
        for crd in crds:
            try:
                ctx.kubectl.delete_crd(crd)
            except CommandError as e:
                log.warning("error while deleting CRD %s of %s: %s", crd, self.chart.name, e)

        ctx.helm.uninstall(self.chart, ctx.killer)
        return payload


def configmap_checksum(configmap: Dict[str, Any]) -> str:
    data = configmap.get("data") or {}
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


class ConfigMapRolloutChart(ChartExecutor):
    """
    Chart whose workload does not pick up ConfigMap changes on its own
    (coredns style). The ConfigMap checksum is taken before the upgrade and
    the workload is restarted when it changed.
    """

    CHECKSUM_KEY = "checksum"

    def __init__(
        self,
        chart: ChartDescriptor,
        *,
        configmap: str,
        workload: str,
        namespace: Optional[str] = None,
        checker: Optional[InstallationChecker] = None,
        vpa: Optional[List[VpaSpec]] = None,
    ):
        super().__init__()
        self.inner = CommonChart(chart, checker=checker, vpa=vpa)
        self.configmap = configmap
        self.workload = workload
        self.namespace = namespace or chart.get_namespace()

    @property
    def chart(self) -> ChartDescriptor:
        return self.inner.chart

    def _checksum(self, ctx: DeployContext) -> str:
        return configmap_checksum(ctx.kubectl.get_configmap(self.namespace, self.configmap))

    def check_prerequisites(self, ctx: DeployContext) -> Optional[RuntimePayload]:
        self.inner.check_prerequisites(ctx)
        if self.chart.action != HelmAction.DEPLOY:
            return None
        return {self.CHECKSUM_KEY: self._checksum(ctx)}

    def pre_exec(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> RuntimePayload:
        return self.inner.pre_exec(ctx, payload)

    def exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        return self.inner.exec(ctx, payload)

    def post_exec(self, ctx: DeployContext, payload: RuntimePayload) -> RuntimePayload:
        if self.chart.action == HelmAction.DEPLOY:
            if not payload:
                raise CommandError(f"Missing payload, can't check {self.configmap} update")
            previous = payload.get(self.CHECKSUM_KEY)
            if previous is None:
                raise CommandError(f"Missing configmap checksum, can't check {self.configmap} diff")

            if self._checksum(ctx) != previous:
                log.info("configmap %s changed, restarting %s", self.configmap, self.workload)
                ctx.kubectl.rollout_restart(self.namespace, self.workload)
            else:
                log.debug("configmap %s unchanged", self.configmap)

        return self.inner.post_exec(ctx, payload)

    def on_deploy_failure(self, ctx: DeployContext, payload: Optional[RuntimePayload]) -> None:
        self.inner.on_deploy_failure(ctx, payload)
