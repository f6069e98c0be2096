from __future__ import annotations

import logging
from contextlib import closing
from typing import Any, Callable

from ..config import NewsProcessingConfig
from ..queue import BoundedJobQueue
from ..storage import (
    get_user_ids_with_credits,
    list_new_item_candidates,
    mark_item_pending,
    revert_item_pending,
)
from ..utils import log_event
from .admission import enqueue_candidates, filter_by_credits


class ProcessingSchedulerJob:
    name = "processing_scheduler"

    def __init__(
        self,
        connect: Callable[[], Any],
        processing_queue: BoundedJobQueue,
        config: NewsProcessingConfig,
    ) -> None:
        self._connect = connect
        self._queue = processing_queue
        self._config = config
        self._logger = logging.getLogger("briefcore.jobs.processing_scheduler")

    def run(self) -> int:
        if not self._queue.can_accept():
            log_event(
                self._logger,
                logging.WARNING,
                "processing_schedule_skipped",
                reason="queue_full",
                queue_size=self._queue.size(),
            )
            return 0

        with closing(self._connect()) as conn:
            users_with_credits = get_user_ids_with_credits(conn)
            if not users_with_credits:
                log_event(self._logger, logging.DEBUG, "processing_schedule_skipped", reason="no_credits")
                return 0
            candidates = list_new_item_candidates(conn, self._config.batch_size * 2)
            admitted, skipped = filter_by_credits(candidates, lambda pair: pair[1], users_with_credits)
            if skipped:
                log_event(self._logger, logging.INFO, "items_skipped_no_credits", count=skipped)
            admitted = admitted[: self._config.batch_size]
            enqueued = enqueue_candidates(
                self._queue,
                [item_id for item_id, _ in admitted],
                lambda item_id: mark_item_pending(conn, item_id),
                lambda item_id: revert_item_pending(conn, item_id),
                self._logger,
                kind="item",
            )
        if enqueued:
            log_event(self._logger, logging.INFO, "items_enqueued", count=enqueued)
        return enqueued

    __call__ = run
