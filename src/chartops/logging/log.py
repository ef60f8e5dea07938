# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/logging/log.py
from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

# kube client and its transport log every request at DEBUG
_CHATTY = ("kubernetes", "urllib3")

_FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)-20s | %(message)s"
_CONSOLE_FORMAT = "%(levelname)-7s %(threadName)-20s %(message)s"


def default_log_dir() -> Path:
    env = os.environ.get("CHARTOPS_LOG_DIR")
    if env:
        return Path(env)
    return Path.home() / ".chartops" / "logs"


def events_file(log_path: Path) -> Path:
    """JSON-lines event stream written next to the run's log file."""
    return log_path.with_suffix(".jsonl")


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "chartops",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    One log file per run, every helm and kubectl call at DEBUG. Lines carry
    the worker thread (`chart-<release>`) since charts of a level log
    concurrently. The console gets INFO, or DEBUG with --verbose.

    Returns (logger, run_id, log_path); run_id is shared with the event observers.
    """
    run_id = str(uuid.uuid4())

    base_dir = base_dir or default_log_dir()
    base_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    if not verbose:
        for lib in _CHATTY:
            logging.getLogger(lib).setLevel(logging.WARNING)

    logger.info("run %s, full trace in %s", run_id, log_path)
    return logger, run_id, log_path
