# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/helm/cli_runner.py
from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from packaging.version import Version

from chartops.config.models import ChartDescriptor
from chartops.errors import ChartInvocationError
from chartops.utils.command import CommandKiller
from chartops.utils.shell import CommandAborted, run_command
from .interface import IHelm
from .release import HistoryRow, ReleaseInfo

log = logging.getLogger("chartops")

HISTORY_MAX = 50


class HelmCliRunner(IHelm):
    """
    A pragmatic wrapper around the `helm` CLI.
    - Mirrors human CLI usage: 'list', 'history', 'upgrade --install', 'uninstall', 'diff upgrade'.
    - Stateless apart from its configuration, so one instance is shared by all chart workers.
    - Testable by mocking subprocess.run.
    """

    def __init__(
        self,
        kubeconfig: str | Path | None = None,
        kube_context: str | None = None,
        env: dict[str, str] | None = None,
        values_dir: Path | None = None,
    ):
        self.kubeconfig = str(kubeconfig) if kubeconfig else None
        self.kube_context = kube_context
        self.env = env or {}
        self.values_dir = values_dir or (Path(tempfile.gettempdir()) / "chartops" / "values")

    # ------------------------- internal helpers -------------------------

    def _base(self) -> list[str]:
        cmd = ["helm"]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        if self.kube_context:
            cmd += ["--kube-context", self.kube_context]
        return cmd

    def _run(
        self,
        argv: List[str],
        allow_rc: set[int] | None = None,
        killer: CommandKiller | None = None,
    ) -> subprocess.CompletedProcess:
        allow_rc = allow_rc or {0}
        env = {**os.environ, **self.env} if self.env else None

        try:
            cp = run_command(argv, env=env, capture=True, killer=killer)
        except CommandAborted as e:
            raise ChartInvocationError(f"helm command aborted for {argv!r}", str(e)) from e
        except OSError as e:
            raise ChartInvocationError(f"unable to run helm for {argv!r}", str(e)) from e

        if cp.returncode not in allow_rc:
            stderr = getattr(cp, "stderr", "") or ""
            raise ChartInvocationError(f"helm failed (rc={cp.returncode}) for {argv!r}", stderr)
        return cp

    def _write_generated_values(self, chart: ChartDescriptor) -> list[str]:
        # one directory per release name, concurrent charts never share a file
        if not chart.yaml_files_content:
            return []
        target = self.values_dir / chart.name
        target.mkdir(parents=True, exist_ok=True)

        paths = []
        for generated in chart.yaml_files_content:
            p = target / generated.filename
            p.write_text(generated.yaml_content)
            paths.append(str(p))
        return paths

    def _values_args(self, chart: ChartDescriptor) -> list[str]:
        args: list[str] = []
        for f in chart.values_files:
            args += ["-f", f]
        for f in self._write_generated_values(chart):
            args += ["-f", f]
        for v in chart.values:
            args += ["--set", f"{v.key}={v.value}"]
        for v in chart.values_string:
            args += ["--set-string", f"{v.key}={v.value}"]
        return args

    # ------------------------- IHelm methods -------------------------

    def get_release(self, name: str, namespace: str) -> Optional[ReleaseInfo]:
        argv = self._base() + ["list", "-a", "-n", namespace, "--filter", f"^{name}$", "-o", "json"]
        cp = self._run(argv)
        try:
            releases = json.loads(cp.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ChartInvocationError(f"unable to parse helm list output for {name}", cp.stdout) from e

        for r in releases:
            if r.get("name") == name:
                return ReleaseInfo.from_helm(r)
        return None

    def get_chart_version(self, name: str, namespace: str) -> Optional[Version]:
        release = self.get_release(name, namespace)
        if release is None:
            return None
        return release.chart_version

    def history(self, name: str, namespace: str) -> List[HistoryRow]:
        argv = self._base() + ["history", name, "-n", namespace, "--max", str(HISTORY_MAX), "-o", "json"]
        cp = self._run(argv, allow_rc={0, 1})
        if cp.returncode == 1:
            if "not found" in (cp.stderr or "").lower():
                return []
            raise ChartInvocationError(f"helm history failed for {name}", cp.stderr)
        return [HistoryRow.from_helm(d) for d in json.loads(cp.stdout or "[]")]

    def upgrade(self, chart: ChartDescriptor, killer: Optional[CommandKiller] = None) -> None:
        argv = (
            self._base()
            + ["upgrade", "--install", chart.name, chart.path, "-n", chart.get_namespace()]
            + ["--create-namespace", "--history-max", str(HISTORY_MAX)]
            + ["--timeout", f"{chart.timeout_seconds}s"]
        )
        if chart.atomic:
            argv += ["--atomic"]
        if chart.wait:
            argv += ["--wait"]
        if chart.force_upgrade:
            argv += ["--force"]
        argv += self._values_args(chart)

        log.info("helm upgrade --install %s (namespace=%s)", chart.name, chart.get_namespace())
        self._run(argv, killer=killer)

    def uninstall(self, chart: ChartDescriptor, killer: Optional[CommandKiller] = None) -> None:
        namespace = chart.get_namespace()
        if self.get_release(chart.name, namespace) is None:
            log.debug("release %s not installed in %s, nothing to uninstall", chart.name, namespace)
            return

        argv = self._base() + [
            "uninstall", chart.name, "-n", namespace, "--wait", "--timeout", f"{chart.timeout_seconds}s",
        ]
        log.info("helm uninstall %s (namespace=%s)", chart.name, namespace)
        self._run(argv, killer=killer)

    def uninstall_if_breaking_version(self, chart: ChartDescriptor) -> bool:
        """
        Uninstall the release when its installed chart version is below the
        reinstall threshold. Returns True when an uninstall happened.
        """
        threshold = chart.reinstall_threshold()
        if threshold is None:
            return False

        installed = self.get_chart_version(chart.name, chart.get_namespace())
        if installed is None or installed >= threshold:
            return False

        log.info(
            "chart %s installed version %s is below %s, reinstalling",
            chart.name, installed, threshold,
        )
        self.uninstall(chart)
        return True

    def upgrade_diff(self, chart: ChartDescriptor) -> str:
        # helm-diff returns rc=2 when changes are detected; treat 0 and 2 as success.
        argv = (
            self._base()
            + ["diff", "upgrade", chart.name, chart.path, "-n", chart.get_namespace(), "--allow-unreleased"]
            + self._values_args(chart)
        )
        cp = self._run(argv, allow_rc={0, 2})
        return cp.stdout or ""
