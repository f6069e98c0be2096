from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timedelta
from typing import Any, Callable

from ..config import FeedIngestionConfig
from ..models import Source
from ..processors.fetch import accepted_source_statuses
from ..queue import BoundedJobQueue
from ..storage import (
    get_user_ids_with_credits,
    list_fetch_candidates,
    mark_source_queued,
    revert_source_queued,
)
from ..utils import isoformat_utc, log_event, parse_iso, utc_now
from .admission import enqueue_candidates, filter_by_credits


def is_source_due(source: Source, now: datetime, default_interval_minutes: int) -> bool:
    last_fetched = parse_iso(source.last_fetched_at)
    if last_fetched is None:
        return True
    interval = source.refresh_interval_minutes
    if interval is None:
        interval = default_interval_minutes
    return now >= last_fetched + timedelta(minutes=interval)


class FeedSchedulerJob:
    name = "feed_scheduler"

    def __init__(
        self,
        connect: Callable[[], Any],
        fetch_queue: BoundedJobQueue,
        config: FeedIngestionConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._connect = connect
        self._queue = fetch_queue
        self._config = config
        self._clock = clock
        self._statuses = accepted_source_statuses(config)
        self._logger = logging.getLogger("briefcore.jobs.feed_scheduler")

    def run(self) -> int:
        if not self._queue.can_accept():
            log_event(
                self._logger,
                logging.WARNING,
                "feed_schedule_skipped",
                reason="queue_full",
                queue_size=self._queue.size(),
            )
            return 0

        now = self._clock()
        cutoff = now - timedelta(minutes=self._config.min_refresh_interval_minutes)
        with closing(self._connect()) as conn:
            candidates = list_fetch_candidates(
                conn,
                self._statuses,
                isoformat_utc(cutoff),
                self._config.batch_size * 2,
            )
            due = [
                pair
                for pair in candidates
                if is_source_due(pair[0], now, self._config.default_refresh_interval_minutes)
            ]
            if not due:
                log_event(self._logger, logging.DEBUG, "feed_schedule_nothing_due")
                return 0

            users_with_credits = get_user_ids_with_credits(conn)
            admitted, skipped = filter_by_credits(due, lambda pair: pair[1], users_with_credits)
            if skipped:
                log_event(self._logger, logging.INFO, "feed_sources_skipped_no_credits", count=skipped)
            admitted = admitted[: self._config.batch_size]

            now_iso = isoformat_utc(now)
            enqueued = enqueue_candidates(
                self._queue,
                [source.id for source, _ in admitted],
                lambda source_id: mark_source_queued(conn, source_id, now_iso),
                lambda source_id: revert_source_queued(conn, source_id),
                self._logger,
                kind="source",
            )
        if enqueued:
            log_event(
                self._logger,
                logging.INFO,
                "feed_sources_enqueued",
                count=enqueued,
                due=len(due),
                queue_size=self._queue.size(),
            )
        return enqueued

    __call__ = run
