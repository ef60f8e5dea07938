# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/kube/client.py
from __future__ import annotations

from typing import Optional

from kubernetes import client, config


def load_api_client(kubeconfig: Optional[str] = None, kube_context: Optional[str] = None) -> client.ApiClient:
    """
    Build the cluster client handle shared (read only) by every chart worker of a run.

    Args:
        kubeconfig: kubeconfig file, defaults to $KUBECONFIG / ~/.kube/config
        kube_context: optional kube context to load
    """
    return config.new_client_from_config(config_file=kubeconfig, context=kube_context)
