# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/checkers.py
from __future__ import annotations

import logging
import time
from typing import Any, List, Optional, Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from chartops.errors import HealthCheckFailed

log = logging.getLogger("chartops")


class InstallationChecker(Protocol):
    """Post-deploy health probe. Raises HealthCheckFailed when unhealthy."""

    def verify_installation(self, kube_client: Any) -> None: ...


class AlwaysPassChecker:
    def verify_installation(self, kube_client: Any) -> None:
        return None


class DeploymentReadyChecker:
    """
    Waits until deployments (by name and/or label selector) have
    availableReplicas == desired. API and transport errors of the
    kubernetes client count as an unhealthy chart.
    """

    def __init__(
        self,
        namespace: str,
        *,
        deployments: Optional[List[str]] = None,
        selector: Optional[str] = None,
        timeout_seconds: int = 300,
        poll_seconds: float = 2.0,
    ):
        self.namespace = namespace
        self.deployments = deployments or []
        self.selector = selector
        self.timeout_seconds = timeout_seconds
        self.poll_seconds = poll_seconds

    def _not_ready(self, api: client.AppsV1Api) -> List[str]:
        items = []
        if self.selector:
            resp = api.list_namespaced_deployment(namespace=self.namespace, label_selector=self.selector)
            items.extend(resp.items)
        for name in self.deployments:
            items.append(api.read_namespaced_deployment(name=name, namespace=self.namespace))

        pending = []
        for d in items:
            desired = d.spec.replicas or 0
            available = d.status.available_replicas or 0
            if available < desired:
                pending.append(f"{d.metadata.name} ({available}/{desired})")
        return pending

    def verify_installation(self, kube_client: Any) -> None:
        api = client.AppsV1Api(kube_client)

        end = time.time() + self.timeout_seconds
        pending: List[str] = []
        while True:
            try:
                pending = self._not_ready(api)
            except (ApiException, HTTPError) as e:
                raise HealthCheckFailed(
                    f"unable to read deployments in namespace {self.namespace}", str(e)
                ) from e
            if not pending:
                return
            if time.time() >= end:
                break
            log.debug("waiting for deployments in %s: %s", self.namespace, ", ".join(pending))
            time.sleep(self.poll_seconds)

        raise HealthCheckFailed(
            f"Timeout waiting for deployments in namespace {self.namespace}: {', '.join(pending)}"
        )
