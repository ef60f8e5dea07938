import time

import pytest

from chartops.utils.command import CommandKiller
from chartops.utils.retry import call_with_retry
from chartops.utils.shell import CommandAborted, run_command


def test_never_killer_does_not_abort():
    k = CommandKiller.never()
    k.cancel()
    assert not k.should_abort()


def test_timeout_killer_aborts_after_deadline():
    k = CommandKiller.from_timeout(0)
    assert k.should_abort()
    assert not CommandKiller.from_timeout(60).should_abort()


def test_cancel():
    k = CommandKiller()
    assert not k.should_abort()
    k.cancel()
    assert k.should_abort()


def test_killer_stops_running_command():
    k = CommandKiller.from_timeout(0.2)
    t0 = time.time()
    with pytest.raises(CommandAborted):
        run_command(["sleep", "10"], killer=k, poll_interval=0.05)
    assert time.time() - t0 < 5


def test_call_with_retry_reraises_last_error():
    attempts = []

    def flaky():
        attempts.append(1)
        raise KeyError(len(attempts))

    with pytest.raises(KeyError) as ei:
        call_with_retry(flaky, retries=2, delay=0)
    assert len(attempts) == 3
    assert ei.value.args == (3,)


def test_call_with_retry_only_retries_listed_errors():
    attempts = []

    def broken():
        attempts.append(1)
        raise TypeError("no")

    with pytest.raises(TypeError):
        call_with_retry(broken, retries=3, delay=0, retry_on=(KeyError,))
    assert len(attempts) == 1


def test_call_with_retry_reports_attempts():
    seen = []
    results = iter([ValueError("a"), ValueError("b"), "ok"])

    def fn():
        r = next(results)
        if isinstance(r, Exception):
            raise r
        return r

    assert call_with_retry(fn, retries=5, delay=0, on_retry=lambda n, e: seen.append((n, str(e)))) == "ok"
    assert seen == [(1, "a"), (2, "b")]
