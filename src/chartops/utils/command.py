# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/utils/command.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CommandKiller:
    """
    Cancellation token for one long running command (helm upgrade, ...).

    Either `cancel()` is called from another thread, or the optional
    deadline (monotonic seconds) passes. It only affects the command it is
    handed to; sibling charts keep their own killer.
    """

    event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None
    cancellable: bool = True

    @classmethod
    def never(cls) -> "CommandKiller":
        return cls(cancellable=False)

    @classmethod
    def from_timeout(cls, seconds: float) -> "CommandKiller":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.event.set()

    def should_abort(self) -> bool:
        if not self.cancellable:
            return False
        if self.event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline
