# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/kube/kubectl.py

from __future__ import annotations

import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Optional, Protocol

from chartops.errors import ClusterApiError
from chartops.utils.shell import run_command

log = logging.getLogger("chartops")

CRASH_LOOP_MIN_RESTARTS = 5


class IKubectl(Protocol):
    def get_pods(self, namespace: str, selector: Optional[str] = None) -> list[dict]: ...

    def delete_pod(self, namespace: str, name: str) -> None: ...

    def delete_crash_looping_pods(self, namespace: str, selector: str) -> list[dict]: ...

    def delete_pods(self, namespace: str, selector: str) -> None: ...

    def get_resources(self, resource: str, namespace: str) -> list[dict]: ...

    def patch_merge(self, kind: str, name: str, namespace: Optional[str], patch: dict) -> None: ...

    def apply_file(self, path: str, *, server_side: bool = False, force_conflicts: bool = False) -> None: ...

    def delete_crd(self, name: str) -> None: ...

    def get_events(self, namespace: str) -> str: ...

    def get_configmap(self, namespace: str, name: str) -> dict: ...

    def rollout_restart(self, namespace: str, workload: str) -> None: ...


def is_crash_looping(pod: dict, restarted_min_count: int = CRASH_LOOP_MIN_RESTARTS) -> bool:
    """
    A pod is crash looping when one of its containers waits in
    CrashLoopBackOff AND restarted at least `restarted_min_count` times.
    """
    for cs in pod.get("status", {}).get("containerStatuses") or []:
        waiting = (cs.get("state") or {}).get("waiting") or {}
        if waiting.get("reason") == "CrashLoopBackOff" and cs.get("restartCount", 0) >= restarted_min_count:
            return True
    return False


class KubectlRunner(IKubectl):
    """
    kubectl runner executed on the orchestrating host.
    """

    def __init__(
        self,
        *,
        kubeconfig: str | Path | None = None,
        context: str | None = None,
        env: dict[str, str] | None = None,
    ):
        self.kubeconfig = str(kubeconfig) if kubeconfig else None
        self.context = context
        self.env = env or {}

    def _run(self, args: list[str]) -> tuple[int, str, str]:
        """
        Run a kubectl command.

        Returns:
            (rc, stdout, stderr)
        """
        argv = ["kubectl"]
        if self.kubeconfig:
            argv += ["--kubeconfig", self.kubeconfig]
        if self.context:
            argv += ["--context", self.context]
        argv += args

        env = {**os.environ, **self.env} if self.env else None
        try:
            cp = run_command(argv, env=env, capture=True)
        except OSError as e:
            raise ClusterApiError(f"unable to run kubectl {' '.join(args)}", str(e)) from e
        return cp.returncode, cp.stdout or "", cp.stderr or ""

    def _check(self, args: list[str], what: str) -> str:
        rc, out, err = self._run(args)
        if rc != 0:
            raise ClusterApiError(f"kubectl {what} failed", err or out)
        return out

    def _json(self, args: list[str], what: str) -> Any:
        out = self._check(args + ["-o", "json"], what)
        try:
            return json.loads(out or "{}")
        except json.JSONDecodeError as e:
            raise ClusterApiError(f"kubectl {what} returned invalid JSON", out) from e

    # ------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------
    def get_pods(self, namespace: str, selector: Optional[str] = None) -> list[dict]:
        args = ["get", "pods", "-n", namespace]
        if selector:
            args += ["-l", selector]
        return self._json(args, "get pods").get("items", [])

    def delete_pod(self, namespace: str, name: str) -> None:
        self._check(["delete", "pod", name, "-n", namespace, "--ignore-not-found"], f"delete pod {name}")

    def delete_crash_looping_pods(self, namespace: str, selector: str) -> list[dict]:
        pods = [p for p in self.get_pods(namespace, selector) if is_crash_looping(p)]
        for pod in pods:
            name = pod.get("metadata", {}).get("name", "")
            log.info("[kubectl] deleting crash looping pod %s/%s", namespace, name)
            self.delete_pod(namespace, name)
        return pods

    def delete_pods(self, namespace: str, selector: str) -> None:
        self._check(["delete", "pods", "-n", namespace, "-l", selector, "--wait=false"], "delete pods")

    # ------------------------------------------------------------
    # Generic resources
    # ------------------------------------------------------------
    def get_resources(self, resource: str, namespace: str) -> list[dict]:
        """
        `resource` is anything kubectl accepts after `get`, e.g.
        "certificate", "secret/my-tls" or "deployments -l app=x".
        """
        try:
            selector = shlex.split(resource)
        except ValueError as e:
            raise ClusterApiError(f"invalid resource selector {resource!r}", str(e)) from e
        data = self._json(["get", *selector, "-n", namespace], f"get {resource}")
        if data.get("kind", "").endswith("List") or "items" in data:
            return data.get("items", [])
        return [data] if data else []

    def patch_merge(self, kind: str, name: str, namespace: Optional[str], patch: dict) -> None:
        args = ["patch", kind, name, "--type", "merge", "-p", json.dumps(patch)]
        if namespace:
            args += ["-n", namespace]
        self._check(args, f"patch {kind}/{name}")

    def apply_file(self, path: str, *, server_side: bool = False, force_conflicts: bool = False) -> None:
        args = ["apply", "-f", path]
        if server_side:
            args.append("--server-side")
        if force_conflicts:
            args.append("--force-conflicts")
        self._check(args, f"apply {path}")

    def delete_crd(self, name: str) -> None:
        self._check(["delete", "crd", name, "--ignore-not-found"], f"delete crd {name}")

    def get_events(self, namespace: str) -> str:
        return self._check(
            ["get", "events", "-n", namespace, "--sort-by=.lastTimestamp"],
            f"get events -n {namespace}",
        )

    def get_configmap(self, namespace: str, name: str) -> dict:
        return self._json(["get", "configmap", name, "-n", namespace], f"get configmap {name}")

    def rollout_restart(self, namespace: str, workload: str) -> None:
        self._check(["rollout", "restart", workload, "-n", namespace], f"rollout restart {workload}")
