from __future__ import annotations

import logging
import time
from contextlib import closing
from typing import Any, Callable

from ..config import FeedIngestionConfig
from ..fetchers.registry import FetcherRegistry
from ..models import ItemStatus, SourceStatus
from ..storage import (
    complete_source_fetch,
    fail_source_fetch,
    get_source,
    insert_news_items,
    record_source_run,
    reset_source_fetch_status,
    start_source_fetch,
)
from ..utils import error_message, log_event, utc_now_iso


def accepted_source_statuses(config: FeedIngestionConfig) -> tuple[SourceStatus, ...]:
    if config.retry_error_sources:
        return (SourceStatus.ACTIVE, SourceStatus.ERROR)
    return (SourceStatus.ACTIVE,)


class FetchWorker:
    """Fetches one source per call and owns its FETCHING transition."""

    def __init__(
        self,
        connect: Callable[[], Any],
        registry: FetcherRegistry,
        config: FeedIngestionConfig,
    ) -> None:
        self._connect = connect
        self._registry = registry
        self._accepted = accepted_source_statuses(config)
        self._logger = logging.getLogger("briefcore.processors.fetch")

    def process(self, source_id: str) -> None:
        with closing(self._connect()) as conn:
            self._process(conn, source_id)

    __call__ = process

    def _process(self, conn, source_id: str) -> None:
        source = get_source(conn, source_id)
        if source is None:
            log_event(self._logger, logging.WARNING, "fetch_source_missing", source_id=source_id)
            return
        if source.status not in self._accepted:
            reset_source_fetch_status(conn, source_id)
            log_event(
                self._logger,
                logging.DEBUG,
                "fetch_source_skipped",
                source_id=source_id,
                status=source.status.value,
            )
            return

        started_at = utc_now_iso()
        if not start_source_fetch(conn, source_id, started_at):
            log_event(
                self._logger,
                logging.DEBUG,
                "fetch_duplicate_pop",
                source_id=source_id,
                fetch_status=source.fetch_status.value,
            )
            return

        start = time.monotonic()
        first_import = source.last_fetched_at is None
        items_found = 0
        try:
            fetcher = self._registry.resolve(source.type)
            items = fetcher.fetch(source, source.last_fetched_at)
            items_found = len(items)
            initial_status = ItemStatus.DONE if first_import else ItemStatus.NEW
            created = insert_news_items(conn, source_id, items, initial_status)
        except Exception as exc:  # noqa: BLE001
            conn.rollback()
            error = error_message(exc)
            if not fail_source_fetch(conn, source_id, error):
                log_event(self._logger, logging.WARNING, "fetch_finalize_lost", source_id=source_id)
            record_source_run(
                conn,
                source_id,
                started_at,
                utc_now_iso(),
                "error",
                items_found,
                0,
                _elapsed_ms(start),
                error,
            )
            log_event(
                self._logger,
                logging.ERROR,
                "fetch_failed",
                source_id=source_id,
                source_type=source.type.value,
                error=error,
            )
            return

        finished_at = utc_now_iso()
        if not complete_source_fetch(conn, source_id, finished_at):
            log_event(self._logger, logging.WARNING, "fetch_finalize_lost", source_id=source_id)
        record_source_run(
            conn,
            source_id,
            started_at,
            finished_at,
            "ok",
            items_found,
            created,
            _elapsed_ms(start),
            None,
        )
        log_event(
            self._logger,
            logging.INFO,
            "fetch_completed",
            source_id=source_id,
            items_found=items_found,
            items_created=created,
            first_import=first_import,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
