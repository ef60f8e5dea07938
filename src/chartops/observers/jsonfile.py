# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/observers/jsonfile.py
from __future__ import annotations

import json
from pathlib import Path

from .events import BaseEvent


class JsonFileObserver:
    """
    Append every event as one JSON line, next to the run log as <log name>.jsonl.
    Each line carries `type` plus the event fields, so a run can be replayed
    with `jq 'select(.type == "ChartFailed")'`.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = {"type": type(event).__name__, **event.dict()}
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
