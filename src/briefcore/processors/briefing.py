from __future__ import annotations

import logging
from contextlib import closing
from datetime import timedelta
from typing import Any, Callable

from ..config import BriefingExecutionConfig
from ..models import Briefing, BriefingFrequency, Report
from ..storage import (
    complete_briefing,
    create_report,
    fail_briefing,
    find_top_scored_items,
    get_briefing,
    list_sources_for_briefing,
    start_briefing_processing,
)
from ..utils import error_message, isoformat_utc, log_event, parse_iso, utc_now_iso


class BriefingWorker:
    def __init__(
        self,
        connect: Callable[[], Any],
        config: BriefingExecutionConfig,
        email_service=None,
    ) -> None:
        self._connect = connect
        self._config = config
        self._email = email_service
        self._logger = logging.getLogger("briefcore.processors.briefing")

    def process(self, briefing_id: str) -> None:
        with closing(self._connect()) as conn:
            report, briefing = self._process(conn, briefing_id)
        if report is not None and briefing is not None:
            self._deliver(briefing, report)

    __call__ = process

    def execute_now(self, briefing_id: str) -> Report:
        """Build a report immediately without touching the briefing's status."""
        with closing(self._connect()) as conn:
            briefing = get_briefing(conn, briefing_id)
            if briefing is None:
                raise LookupError(f"briefing not found: {briefing_id}")
            report = self.build_report(conn, briefing)
        log_event(
            self._logger,
            logging.INFO,
            "briefing_executed_now",
            briefing_id=briefing_id,
            report_id=report.id,
            items=len(report.items),
        )
        self._deliver(briefing, report)
        return report

    def build_report(self, conn, briefing: Briefing) -> Report:
        now_iso = utc_now_iso()
        since = briefing.last_executed_at or self._default_since(briefing, now_iso)
        source_ids = [source.id for source in list_sources_for_briefing(conn, briefing.id)]
        items = []
        if source_ids:
            items = find_top_scored_items(
                conn, source_ids, since, self._config.max_report_items
            )
        return create_report(conn, briefing.id, items, now_iso)

    def _process(self, conn, briefing_id: str) -> tuple[Report | None, Briefing | None]:
        briefing = get_briefing(conn, briefing_id)
        if briefing is None:
            log_event(self._logger, logging.WARNING, "briefing_missing", briefing_id=briefing_id)
            return None, None
        if not start_briefing_processing(conn, briefing_id, utc_now_iso()):
            log_event(
                self._logger,
                logging.DEBUG,
                "briefing_stale_pop",
                briefing_id=briefing_id,
                status=briefing.status.value,
            )
            return None, None

        try:
            report = self.build_report(conn, briefing)
        except Exception as exc:  # noqa: BLE001
            conn.rollback()
            error = error_message(exc, prefix="Processing failed: ")
            fail_briefing(conn, briefing_id, error)
            log_event(
                self._logger,
                logging.ERROR,
                "briefing_failed",
                briefing_id=briefing_id,
                error=error,
            )
            return None, None

        if not complete_briefing(conn, briefing_id):
            log_event(self._logger, logging.WARNING, "briefing_finalize_lost", briefing_id=briefing_id)
        log_event(
            self._logger,
            logging.INFO,
            "briefing_completed",
            briefing_id=briefing_id,
            report_id=report.id,
            items=len(report.items),
        )
        return report, briefing

    def _deliver(self, briefing: Briefing, report: Report) -> None:
        if self._email is None:
            return
        try:
            self._email.send_report_email(briefing, report)
        except Exception as exc:  # noqa: BLE001
            log_event(
                self._logger,
                logging.ERROR,
                "report_email_failed",
                briefing_id=briefing.id,
                report_id=report.id,
                error=str(exc),
            )

    def _default_since(self, briefing: Briefing, now_iso: str) -> str:
        days = (
            self._config.weekly_lookback_days
            if briefing.frequency == BriefingFrequency.WEEKLY
            else self._config.daily_lookback_days
        )
        return isoformat_utc(parse_iso(now_iso) - timedelta(days=days))
