"""Thread helpers for bounded provider calls and per-rule serialization."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any


def run_in_thread(func: Callable[..., Any], *args: Any, name: str | None = None) -> Future:
    """Run ``func(*args)`` on a fresh daemon thread and return its future.

    A provider call that never returns keeps only its own thread; it cannot
    occupy a pool slot needed by other owners or rules.
    """
    future: Future = Future()

    def _runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = func(*args)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    thread = threading.Thread(target=_runner, name=name, daemon=True)
    thread.start()
    return future


class FifoLock:
    """Mutex that grants ownership in arrival order.

    ``threading.Lock`` wakes waiters in no particular order; dispatches of one
    rule must run in the order they were requested.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._next_ticket = 0
        self._serving = 0

    def acquire(self) -> None:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._cond.wait()

    def release(self) -> None:
        with self._cond:
            self._serving += 1
            self._cond.notify_all()

    def locked(self) -> bool:
        with self._cond:
            return self._next_ticket != self._serving

    def __enter__(self) -> FifoLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
