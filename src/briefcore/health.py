from __future__ import annotations

from datetime import timedelta
from typing import Any

from .models import SourceStatus
from .queue import BoundedJobQueue
from .storage import (
    count_items_by_status,
    count_sources_by_status,
    count_stuck_briefings,
    count_stuck_items,
    count_stuck_sources,
)
from .utils import isoformat_utc, utc_now

ERROR_RATE_THRESHOLD = 0.5
QUEUE_USAGE_THRESHOLD = 0.9
STUCK_COUNT_THRESHOLD = 10

UP = "UP"
DOWN = "DOWN"


def feed_ingestion_health(
    conn: Any, fetch_queue: BoundedJobQueue | None, stuck_threshold_minutes: int
) -> dict[str, Any]:
    by_status = count_sources_by_status(conn)
    total = sum(by_status.values())
    errors = by_status.get(SourceStatus.ERROR.value, 0)
    details: dict[str, Any] = {"total_sources": total, "error_sources": errors}
    status = UP
    if total:
        error_rate = errors / total
        details["error_rate"] = round(error_rate, 3)
        if error_rate > ERROR_RATE_THRESHOLD:
            status = DOWN
            details["error_warning"] = "Too many sources in error"
    stuck = count_stuck_sources(conn, _threshold(stuck_threshold_minutes))
    status = _apply_common(status, details, fetch_queue, stuck, "stuck_sources")
    return {"status": status, "details": details}


def news_processing_health(
    conn: Any, processing_queue: BoundedJobQueue | None, stuck_threshold_minutes: int
) -> dict[str, Any]:
    details: dict[str, Any] = {"items_by_status": count_items_by_status(conn)}
    stuck = count_stuck_items(conn, _threshold(stuck_threshold_minutes))
    status = _apply_common(UP, details, processing_queue, stuck, "stuck_items")
    return {"status": status, "details": details}


def briefing_execution_health(
    conn: Any, briefing_queue: BoundedJobQueue | None, stuck_threshold_minutes: int
) -> dict[str, Any]:
    details: dict[str, Any] = {}
    stuck = count_stuck_briefings(conn, _threshold(stuck_threshold_minutes))
    status = _apply_common(UP, details, briefing_queue, stuck, "stuck_briefings")
    return {"status": status, "details": details}


def _apply_common(
    status: str,
    details: dict[str, Any],
    job_queue: BoundedJobQueue | None,
    stuck: int,
    stuck_key: str,
) -> str:
    if job_queue is not None:
        usage = job_queue.size() / job_queue.capacity
        details["queue_size"] = job_queue.size()
        details["queue_capacity"] = job_queue.capacity
        details["queue_usage"] = round(usage, 3)
        if usage > QUEUE_USAGE_THRESHOLD:
            status = DOWN
            details["queue_warning"] = "Queue nearly full"
    details[stuck_key] = stuck
    if stuck > STUCK_COUNT_THRESHOLD:
        status = DOWN
        details["stuck_warning"] = f"Too many {stuck_key.replace('_', ' ')}"
    return status


def _threshold(minutes: int) -> str:
    return isoformat_utc(utc_now() - timedelta(minutes=minutes))
