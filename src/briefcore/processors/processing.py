from __future__ import annotations

import logging
from contextlib import closing
from typing import Any, Callable

from ..config import NewsProcessingConfig
from ..storage import (
    complete_item_enrichment,
    fail_item,
    get_item_context,
    get_news_item,
    start_item_processing,
    use_credits,
)
from ..utils import error_message, log_event


class InsufficientCreditsError(RuntimeError):
    pass


class ProcessingWorker:
    """Enriches and scores one NEW item that the scheduler moved to PENDING."""

    def __init__(
        self,
        connect: Callable[[], Any],
        ai_service,
        config: NewsProcessingConfig,
    ) -> None:
        self._connect = connect
        self._ai = ai_service
        self._credits_per_item = config.credits_per_item
        self._logger = logging.getLogger("briefcore.processors.processing")

    def process(self, item_id: str) -> None:
        with closing(self._connect()) as conn:
            self._process(conn, item_id)

    __call__ = process

    def _process(self, conn, item_id: str) -> None:
        item = get_news_item(conn, item_id)
        if item is None:
            log_event(self._logger, logging.WARNING, "item_missing", item_id=item_id)
            return
        if not start_item_processing(conn, item_id):
            log_event(
                self._logger,
                logging.DEBUG,
                "item_stale_pop",
                item_id=item_id,
                status=item.status.value,
            )
            return

        try:
            user_id, criteria = get_item_context(conn, item_id)
            if user_id is None:
                raise LookupError(f"no owning briefing for item {item_id}")
            result = self._ai.enrich_with_score(
                item.title, item.clean_content or item.raw_content, criteria
            )
            if not use_credits(conn, user_id, self._credits_per_item):
                raise InsufficientCreditsError(f"Insufficient credits for user {user_id}")
        except Exception as exc:  # noqa: BLE001
            conn.rollback()
            error = error_message(exc, prefix="Processing failed: ")
            fail_item(conn, item_id, error)
            log_event(self._logger, logging.ERROR, "item_processing_failed", item_id=item_id, error=error)
            return

        if not complete_item_enrichment(conn, item_id, result):
            log_event(self._logger, logging.WARNING, "item_finalize_lost", item_id=item_id)
            return
        log_event(
            self._logger,
            logging.INFO,
            "item_processed",
            item_id=item_id,
            score=result.score,
        )
