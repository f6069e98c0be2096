from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .utils import log_event


class PeriodicTask:
    """Runs a job callable at a fixed rate on its own daemon thread.

    A cycle that raises is logged and the schedule continues. The first run
    happens after ``initial_delay_seconds``.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], object],
        interval_seconds: float,
        *,
        initial_delay_seconds: float = 0.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._initial_delay = initial_delay_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._logger = logging.getLogger(f"briefcore.periodic.{name}")
        self.runs = 0
        self.failures = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        log_event(
            self._logger,
            logging.INFO,
            "periodic_task_started",
            job=self.name,
            interval_seconds=self.interval_seconds,
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log_event(self._logger, logging.WARNING, "periodic_task_stop_timeout", job=self.name)
        self._thread = None

    def run_now(self) -> bool:
        self.runs += 1
        try:
            self._func()
        except Exception as exc:  # noqa: BLE001
            self.failures += 1
            self._logger.exception("event=job_cycle_failed job=%s error=%s", self.name, exc)
            return False
        return True

    def _loop(self) -> None:
        if self._stop.wait(self._initial_delay):
            return
        next_run = time.monotonic()
        while not self._stop.is_set():
            self.run_now()
            next_run += self.interval_seconds
            delay = next_run - time.monotonic()
            if delay < 0:
                # Overran the period; skip missed ticks instead of bursting.
                next_run = time.monotonic()
                delay = 0
            if self._stop.wait(delay):
                return
