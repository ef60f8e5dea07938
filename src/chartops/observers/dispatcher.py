# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/observers/dispatcher.py
from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol

from .events import BaseEvent

log = logging.getLogger("chartops")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    """
    Fan-out of lifecycle events. Chart workers emit from their own threads,
    so delivery is serialized: an observer never sees two events at once.
    """

    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = observers or []
        self._lock = threading.Lock()

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception as e:  # observers must not break deploys
                    log.debug("observer %r failed on %s: %s", ob, type(event).__name__, e)
