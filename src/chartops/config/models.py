# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/config/models.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class HelmAction(str, Enum):
    DEPLOY = "deploy"
    DESTROY = "destroy"
    SKIP = "skip"


class ChartNamespace(str, Enum):
    KUBE_SYSTEM = "kube-system"
    PROMETHEUS = "prometheus"
    LOGGING = "logging"
    CERT_MANAGER = "cert-manager"
    NGINX_INGRESS = "nginx-ingress"
    QOVERY = "qovery"
    CUSTOM = "custom"


DEFAULT_HELM_TIMEOUT_SECONDS = 600


class ChartSetValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str


class ChartValuesGenerated(BaseModel):
    """Inline values rendered by the caller, written to disk before helm runs."""

    model_config = ConfigDict(frozen=True)

    filename: str
    yaml_content: str

    @classmethod
    def for_chart(cls, name: str, yaml_content: str) -> "ChartValuesGenerated":
        return cls(filename=f"{name}_override.yaml", yaml_content=yaml_content)


class CrdsUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Optional[str] = None          # manifests applied before the upgrade
    resources: List[str] = Field(default_factory=list)  # CRD names removed on destroy


class UpgradeRetry(BaseModel):
    model_config = ConfigDict(frozen=True)

    nb_retry: int = 0
    delay_ms: int = 0


class ChartDescriptor(BaseModel):
    """
    Static description of how one chart must be deployed.

    `name` is the helm release name and must be unique across a plan.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: str = "."
    namespace: ChartNamespace = ChartNamespace.KUBE_SYSTEM
    custom_namespace: Optional[str] = None
    action: HelmAction = HelmAction.DEPLOY

    atomic: bool = True
    force_upgrade: bool = False
    recreate_pods: bool = False
    wait: bool = True
    reinstall_if_installed_version_below: Optional[str] = None
    skip_if_already_installed: bool = False
    timeout_seconds: int = DEFAULT_HELM_TIMEOUT_SECONDS
    upgrade_retry: Optional[UpgradeRetry] = None

    values: List[ChartSetValue] = Field(default_factory=list)
    values_string: List[ChartSetValue] = Field(default_factory=list)
    values_files: List[str] = Field(default_factory=list)
    yaml_files_content: List[ChartValuesGenerated] = Field(default_factory=list)

    k8s_selector: Optional[str] = None
    backup_resources: List[str] = Field(default_factory=list)
    crds_update: Optional[CrdsUpdate] = None

    @model_validator(mode="before")
    @classmethod
    def _namespace_shorthand(cls, data: Any) -> Any:
        # `namespace: my-ns` in YAML means a custom namespace
        if isinstance(data, dict):
            ns = data.get("namespace")
            known = {n.value for n in ChartNamespace}
            if isinstance(ns, str) and ns not in known:
                data = {**data, "namespace": ChartNamespace.CUSTOM, "custom_namespace": ns}
        return data

    @field_validator("reinstall_if_installed_version_below")
    @classmethod
    def _valid_version(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                Version(v)
            except InvalidVersion as e:
                raise ValueError(f"invalid reinstall version threshold '{v}'") from e
        return v

    def get_namespace(self) -> str:
        if self.namespace == ChartNamespace.CUSTOM:
            return self.custom_namespace or self.namespace.value
        return self.namespace.value

    def reinstall_threshold(self) -> Optional[Version]:
        if self.reinstall_if_installed_version_below is None:
            return None
        return Version(self.reinstall_if_installed_version_below)


# ---------------------------------------------------------------------
# Vertical pod autoscaler
# ---------------------------------------------------------------------
class VpaTargetKind(str, Enum):
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"


class VpaTargetRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_version: Literal["apps/v1"] = "apps/v1"
    kind: VpaTargetKind = VpaTargetKind.DEPLOYMENT
    name: str


class VpaContainerPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "*"
    min_allowed_cpu: Optional[str] = None
    max_allowed_cpu: Optional[str] = None
    min_allowed_memory: Optional[str] = None
    max_allowed_memory: Optional[str] = None


class VpaSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_ref: VpaTargetRef
    container_policy: VpaContainerPolicy = VpaContainerPolicy()

    def controlled_resources(self) -> List[str]:
        p = self.container_policy
        resources = []
        if p.min_allowed_cpu is not None or p.max_allowed_cpu is not None:
            resources.append("cpu")
        if p.min_allowed_memory is not None or p.max_allowed_memory is not None:
            resources.append("memory")
        return resources

    def to_helm_values(self) -> Dict[str, Any]:
        p = self.container_policy
        return {
            "targetRefName": self.target_ref.name,
            "targetRefApiVersion": self.target_ref.api_version,
            "targetRefKind": self.target_ref.kind.value,
            "containerName": p.name,
            "minAllowedCpu": p.min_allowed_cpu,
            "minAllowedMemory": p.min_allowed_memory,
            "maxAllowedCpu": p.max_allowed_cpu,
            "maxAllowedMemory": p.max_allowed_memory,
            "controlledResources": self.controlled_resources(),
        }


# ---------------------------------------------------------------------
# Plan file
# ---------------------------------------------------------------------
class DeploymentCheckSpec(BaseModel):
    """Post-deploy probe: listed deployments must have all replicas available."""

    deployments: List[str] = Field(default_factory=list)
    selector: Optional[str] = None
    namespace: Optional[str] = None     # defaults to the chart namespace
    timeout_seconds: int = 300


class ConfigMapRolloutSpec(BaseModel):
    configmap: str
    workload: str                       # e.g. "deployment/coredns"
    namespace: Optional[str] = None


class ChartEntry(ChartDescriptor):
    vpa: List[VpaSpec] = Field(default_factory=list)
    health_check: Optional[DeploymentCheckSpec] = None
    configmap_rollout: Optional[ConfigMapRolloutSpec] = None


class PlanConfig(BaseModel):
    context: Optional[str] = None       # Kubernetes context to use
    kubeconfig: Optional[str] = None
    environment: Literal["dev", "staging", "prod"] = "dev"
    backup_dir: Optional[str] = None
    vpa_chart_path: str = "charts/vertical-pod-autoscaler-configs"
    levels: List[List[ChartEntry]] = Field(default_factory=list)

    def charts(self) -> List[ChartEntry]:
        return [c for level in self.levels for c in level]

    def by_name(self) -> Dict[str, ChartEntry]:
        return {c.name: c for c in self.charts()}
