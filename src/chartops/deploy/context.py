# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/deploy/context.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from chartops.helm.backup import BackupManager
from chartops.helm.interface import IHelm
from chartops.kube.kubectl import IKubectl
from chartops.observers.dispatcher import EventBus
from chartops.observers.events import BaseEvent, new_ctx, stamp
from chartops.utils.command import CommandKiller
from .vpa import VpaReconciler


@dataclass(frozen=True)
class DeployContext:
    """
    Everything a chart worker needs, handed to it explicitly.

    One instance is shared read only by every worker of a level; the
    runner derives a per-chart copy (`for_chart`) carrying that chart's killer.
    """

    helm: IHelm
    kubectl: IKubectl
    backups: BackupManager
    vpa: VpaReconciler
    kube_client: Any = None
    killer: CommandKiller = field(default_factory=CommandKiller.never)
    bus: EventBus = field(default_factory=EventBus)
    run_ctx: Dict[str, Any] = field(default_factory=lambda: new_ctx(env="dev", context=None))

    def for_chart(self, killer: Optional[CommandKiller] = None) -> "DeployContext":
        return DeployContext(
            helm=self.helm,
            kubectl=self.kubectl,
            backups=self.backups,
            vpa=self.vpa,
            kube_client=self.kube_client,
            killer=killer or self.killer,
            bus=self.bus,
            run_ctx=dict(self.run_ctx),
        )

    def emit(self, event_cls: type[BaseEvent], **data: Any) -> None:
        self.bus.emit(event_cls(**data, **stamp(self.run_ctx)))
