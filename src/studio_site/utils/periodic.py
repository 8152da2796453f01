from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from studio_site.utils.log import logger


class PeriodicTask:
    """
    Repeating background call on a daemon thread.

    The first call happens one interval after `start()`. `stop()` wakes the
    thread immediately; a call already in progress is allowed to finish.
    """

    def __init__(self, fn: Callable[[], Any], *, interval_s: float, name: str) -> None:
        if float(interval_s) <= 0:
            raise ValueError("interval_s must be > 0")
        self._fn = fn
        self._interval_s = float(interval_s)
        self._name = str(name)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def is_running(self) -> bool:
        t = self._thread
        return bool(t is not None and t.is_alive())

    def start(self) -> None:
        with self._lock:
            if self.is_running():
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._thread.start()
        logger.info("periodic_task_started", task=self._name, interval_s=self._interval_s)

    def stop(self, *, timeout_s: float = 5.0) -> None:
        with self._lock:
            t = self._thread
            self._thread = None
            self._stop.set()
        if t is not None and t is not threading.current_thread():
            t.join(timeout=float(timeout_s))
            logger.info("periodic_task_stopped", task=self._name)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self._fn()
            except Exception as ex:
                logger.warning("periodic_task_failed", task=self._name, error=str(ex))
