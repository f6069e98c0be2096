from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable

from .utils import log_event

Processor = Callable[[str], None]


class BoundedJobQueue:
    """Fixed-capacity FIFO of entity ids.

    Producers never block: a full buffer makes ``enqueue`` return False so the
    scheduler can revert whatever state it committed before the hand-off.
    Only ids are buffered so workers always load the current row.
    """

    def __init__(self, name: str, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.name = name
        self.capacity = capacity
        self._queue: queue.Queue[str] = queue.Queue(maxsize=capacity)
        self._logger = logging.getLogger(f"briefcore.queue.{name}")

    def enqueue(self, entity_id: str) -> bool:
        try:
            self._queue.put_nowait(entity_id)
        except queue.Full:
            log_event(
                self._logger,
                logging.WARNING,
                "queue_full",
                queue=self.name,
                entity_id=entity_id,
                capacity=self.capacity,
            )
            return False
        log_event(
            self._logger,
            logging.DEBUG,
            "queue_enqueued",
            queue=self.name,
            entity_id=entity_id,
            size=self.size(),
        )
        return True

    def can_accept(self) -> bool:
        return self.size() < self.capacity

    def size(self) -> int:
        return self._queue.qsize()

    def remaining_capacity(self) -> int:
        return max(self.capacity - self.size(), 0)

    def poll(self, timeout: float) -> str | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1


class WorkerPool:
    def __init__(
        self,
        name: str,
        job_queue: BoundedJobQueue,
        processor: Processor,
        worker_count: int,
        *,
        poll_timeout_seconds: float = 1.0,
        shutdown_grace_seconds: float = 30.0,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self.name = name
        self.queue = job_queue
        self.worker_count = worker_count
        self._processor = processor
        self._poll_timeout = poll_timeout_seconds
        self._grace = shutdown_grace_seconds
        self._running = threading.Event()
        self._threads: list[threading.Thread] = []
        self._active = 0
        self._active_lock = threading.Lock()
        self._processed = 0
        self._failed = 0
        self._logger = logging.getLogger(f"briefcore.pool.{name}")

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        self._threads = []
        for index in range(self.worker_count):
            thread = threading.Thread(
                target=self._run,
                name=f"{self.name}-worker-{index + 1}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        log_event(
            self._logger,
            logging.INFO,
            "worker_pool_started",
            pool=self.name,
            workers=self.worker_count,
        )

    def shutdown(self) -> int:
        """Stop the pool and return the number of ids dropped from the queue."""
        self._running.clear()
        deadline = time.monotonic() + self._grace
        for thread in self._threads:
            remaining = max(deadline - time.monotonic(), 0.0)
            thread.join(timeout=remaining)
        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            log_event(
                self._logger,
                logging.WARNING,
                "worker_pool_forced_shutdown",
                pool=self.name,
                abandoned=len(alive),
                threads=",".join(alive),
            )
        dropped = self.queue.clear()
        log_event(
            self._logger,
            logging.INFO,
            "worker_pool_stopped",
            pool=self.name,
            dropped=dropped,
        )
        self._threads = []
        return dropped

    def stats(self) -> dict[str, object]:
        with self._active_lock:
            return {
                "workers": self.worker_count,
                "running": self.running,
                "active": self._active,
                "processed": self._processed,
                "failed": self._failed,
                "queue_size": self.queue.size(),
                "queue_capacity": self.queue.capacity,
            }

    def _run(self) -> None:
        while self._running.is_set():
            entity_id = self.queue.poll(self._poll_timeout)
            if entity_id is None:
                continue
            if not self._running.is_set():
                log_event(self._logger, logging.DEBUG, "worker_pop_after_shutdown", pool=self.name, entity_id=entity_id)
                break
            self.run_job(entity_id)

    def run_job(self, entity_id: str) -> bool:
        with self._active_lock:
            self._active += 1
        try:
            self._processor(entity_id)
        except Exception as exc:  # noqa: BLE001
            with self._active_lock:
                self._failed += 1
            self._logger.exception(
                "event=worker_job_failed pool=%s entity_id=%s error=%s",
                self.name,
                entity_id,
                exc,
            )
            return False
        else:
            with self._active_lock:
                self._processed += 1
            return True
        finally:
            with self._active_lock:
                self._active -= 1
