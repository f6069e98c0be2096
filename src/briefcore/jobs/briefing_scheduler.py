from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, time, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models import DAYS_OF_WEEK, Briefing, BriefingFrequency
from ..queue import BoundedJobQueue
from ..storage import (
    get_user_ids_with_credits,
    list_briefing_candidates,
    mark_briefing_queued,
    revert_briefing_queued,
)
from ..utils import isoformat_utc, log_event, parse_iso, utc_now
from .admission import enqueue_candidates, filter_by_credits

logger = logging.getLogger("briefcore.jobs.briefing_scheduler")


def resolve_timezone(name: str | None, briefing_id: str | None = None):
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError, OSError):
        log_event(
            logger,
            logging.WARNING,
            "briefing_invalid_timezone",
            briefing_id=briefing_id,
            timezone=name,
        )
        return timezone.utc


def parse_schedule_time(value: str) -> time:
    return time.fromisoformat(value.strip())


def is_briefing_due(briefing: Briefing, now_utc: datetime) -> bool:
    tz = resolve_timezone(briefing.timezone, briefing.id)
    local_now = now_utc.astimezone(tz)

    if briefing.frequency == BriefingFrequency.WEEKLY and briefing.schedule_day_of_week:
        if DAYS_OF_WEEK[local_now.weekday()] != briefing.schedule_day_of_week.upper():
            return False

    last_executed = parse_iso(briefing.last_executed_at)
    if last_executed is not None and last_executed.astimezone(tz).date() >= local_now.date():
        return False

    try:
        scheduled = parse_schedule_time(briefing.schedule_time)
    except ValueError:
        log_event(
            logger,
            logging.WARNING,
            "briefing_invalid_schedule_time",
            briefing_id=briefing.id,
            schedule_time=briefing.schedule_time,
        )
        return False
    return local_now.time().replace(tzinfo=None) >= scheduled.replace(tzinfo=None)


class BriefingSchedulerJob:
    name = "briefing_scheduler"

    def __init__(
        self,
        connect: Callable[[], Any],
        briefing_queue: BoundedJobQueue,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._connect = connect
        self._queue = briefing_queue
        self._clock = clock
        self._logger = logger

    def run(self) -> int:
        if not self._queue.can_accept():
            log_event(
                self._logger,
                logging.WARNING,
                "briefing_schedule_skipped",
                reason="queue_full",
                queue_size=self._queue.size(),
            )
            return 0

        now = self._clock()
        start_of_day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        with closing(self._connect()) as conn:
            candidates = list_briefing_candidates(conn, isoformat_utc(start_of_day))
            due = [briefing for briefing in candidates if is_briefing_due(briefing, now)]
            if not due:
                return 0
            users_with_credits = get_user_ids_with_credits(conn)

        admitted, skipped = filter_by_credits(due, lambda b: b.user_id, users_with_credits)
        if skipped:
            log_event(self._logger, logging.INFO, "briefings_skipped_no_credits", count=skipped)

        now_iso = isoformat_utc(now)
        enqueued = enqueue_candidates(
            self._queue,
            [briefing.id for briefing in admitted],
            lambda briefing_id: self._update(mark_briefing_queued, briefing_id, now_iso),
            lambda briefing_id: self._update(revert_briefing_queued, briefing_id),
            self._logger,
            kind="briefing",
        )
        if enqueued:
            log_event(
                self._logger,
                logging.INFO,
                "briefings_enqueued",
                count=enqueued,
                due=len(due),
            )
        return enqueued

    __call__ = run

    def _update(self, func: Callable[..., bool], *args: Any) -> bool:
        # Each status change commits on its own connection so a worker
        # popping the id reads the committed row.
        with closing(self._connect()) as conn:
            return func(conn, *args)
