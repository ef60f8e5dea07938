# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/utils/shell.py

from __future__ import annotations

import logging
import subprocess
import time
from typing import Mapping, Optional, Sequence

from .command import CommandKiller

log = logging.getLogger("chartops")


class CommandAborted(RuntimeError):
    pass


def run_command(
    argv: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    capture: bool = True,
    killer: Optional[CommandKiller] = None,
    poll_interval: float = 0.5,
) -> subprocess.CompletedProcess:
    """
    Execute a local command and return the completed process.

    - Never raises on non-zero exit, callers classify the return code.
    - With a cancellable `killer`, the child is polled and killed as soon
      as the killer fires; CommandAborted is raised in that case.
    """
    argv = list(argv)
    log.debug("$ %s", " ".join(argv))
    start = time.time()

    if killer is None or not killer.cancellable:
        cp = subprocess.run(
            argv,
            check=False,
            text=True,
            capture_output=capture,
            env=dict(env) if env else None,
        )
    else:
        proc = subprocess.Popen(
            argv,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env else None,
        )
        while True:
            try:
                out, err = proc.communicate(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                if killer.should_abort():
                    proc.kill()
                    proc.communicate()
                    raise CommandAborted(f"command aborted: {' '.join(argv)}")
        cp = subprocess.CompletedProcess(argv, proc.returncode, out, err)

    elapsed = round(time.time() - start, 2)
    log.debug("rc=%s after %ss: %s", cp.returncode, elapsed, argv[:3])
    return cp
