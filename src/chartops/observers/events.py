# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


def utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single deploy invocation
    env: str          # dev/staging/prod
    context: Optional[str]  # kube-context

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": utc_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same context, fresh timestamp."""
    return {**ctx, "ts": utc_ts()}


# ---------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanValidated(BaseEvent):
    levels: List[List[str]]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class LevelStarted(BaseEvent):
    level: int
    charts: List[str]
    dry_run: bool

@dataclass(frozen=True)
class DiffRendered(BaseEvent):
    level: int
    name: str
    changed: bool

@dataclass(frozen=True)
class LevelSucceeded(BaseEvent):
    level: int
    duration_ms: int

@dataclass(frozen=True)
class LevelFailed(BaseEvent):
    level: int
    failed: List[str]
    error: str


# ---------------------------------------------------------------------
# Chart lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ChartStarted(BaseEvent):
    name: str
    namespace: str
    action: str

@dataclass(frozen=True)
class ChartPhaseCompleted(BaseEvent):
    name: str
    phase: str

@dataclass(frozen=True)
class ChartSucceeded(BaseEvent):
    name: str
    duration_ms: int

@dataclass(frozen=True)
class ChartFailed(BaseEvent):
    name: str
    phase: str
    error: str


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class DeploySummary(BaseEvent):
    ok: int
    failed: int
    skipped: int
