from __future__ import annotations

import json
import uuid
from datetime import time
from typing import Any, Iterable

from .db import connect_db
from .models import (
    REPORT_STATUS_GENERATED,
    Briefing,
    BriefingFrequency,
    BriefingStatus,
    EnrichmentResult,
    FetchedItem,
    FetchStatus,
    ItemStatus,
    NewsItem,
    Report,
    ReportItem,
    Source,
    SourceStatus,
    SourceType,
    User,
)
from .utils import json_dumps, utc_now_iso

_SOURCE_COLUMNS = """
    id, briefing_id, name, url, type, status, fetch_status, refresh_interval_minutes,
    last_fetched_at, queued_at, fetch_started_at, last_error, extraction_prompt
"""

_BRIEFING_COLUMNS = """
    id, user_id, title, description, briefing_criteria, frequency, schedule_day_of_week,
    schedule_time, timezone, status, email_delivery_enabled, last_executed_at, queued_at,
    processing_started_at, error_message
"""

_ITEM_COLUMNS = """
    id, source_id, guid, title, link, author, published_at, raw_content, clean_content,
    summary, tags_json, score, score_reasoning, status, error_message, created_at, updated_at
"""


def init_db(path: str | None = None):
    return connect_db(path)


def new_id() -> str:
    return uuid.uuid4().hex


# Users and credits


def create_user(conn: Any, email: str, credits: int = 0, plan: str = "FREE") -> str:
    user_id = new_id()
    now = utc_now_iso()
    conn.execute(
        "INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)",
        (user_id, email, now),
    )
    conn.execute(
        """
        INSERT INTO subscriptions
            (id, user_id, plan, credits_balance, monthly_credits, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (new_id(), user_id, plan, credits, credits, now, now),
    )
    conn.commit()
    return user_id


def get_user(conn: Any, user_id: str) -> User | None:
    cursor = conn.execute(
        """
        SELECT u.id, u.email, COALESCE(s.credits_balance, 0)
        FROM users u
        LEFT JOIN subscriptions s ON s.user_id = u.id
        WHERE u.id = ?
        """,
        (user_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return User(id=row[0], email=row[1], credits_balance=int(row[2]))


def set_credits(conn: Any, user_id: str, credits: int) -> bool:
    cursor = conn.execute(
        "UPDATE subscriptions SET credits_balance = ?, updated_at = ? WHERE user_id = ?",
        (credits, utc_now_iso(), user_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def get_user_ids_with_credits(conn: Any) -> set[str]:
    cursor = conn.execute(
        "SELECT user_id FROM subscriptions WHERE credits_balance > 0"
    )
    return {row[0] for row in cursor.fetchall()}


def use_credits(conn: Any, user_id: str, amount: int) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE subscriptions
        SET credits_balance = credits_balance - ?, updated_at = ?
        WHERE user_id = ? AND credits_balance >= ?
        """,
        (amount, now, user_id, amount),
    )
    if cursor.rowcount != 1:
        conn.rollback()
        return False
    conn.execute(
        """
        INSERT INTO credit_usage_logs (id, user_id, credits_used, created_at)
        VALUES (?, ?, ?, ?)
        """,
        (new_id(), user_id, amount, now),
    )
    conn.commit()
    return True


# Briefings


def create_briefing(
    conn: Any,
    user_id: str,
    title: str,
    *,
    frequency: BriefingFrequency | str = BriefingFrequency.DAILY,
    schedule_time: str = "08:00",
    schedule_day_of_week: str | None = None,
    timezone: str = "UTC",
    briefing_criteria: str | None = None,
    description: str | None = None,
    email_delivery_enabled: bool = False,
    status: BriefingStatus | str = BriefingStatus.ACTIVE,
) -> str:
    try:
        time.fromisoformat(schedule_time.strip())
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid schedule time: {schedule_time!r}, expected HH:MM") from None
    briefing_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO briefings
            (id, user_id, title, description, briefing_criteria, frequency,
             schedule_day_of_week, schedule_time, timezone, status,
             email_delivery_enabled, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            briefing_id,
            user_id,
            title,
            description,
            briefing_criteria,
            BriefingFrequency(frequency).value,
            schedule_day_of_week.upper() if schedule_day_of_week else None,
            schedule_time,
            timezone,
            BriefingStatus(status).value,
            1 if email_delivery_enabled else 0,
            now,
            now,
        ),
    )
    conn.commit()
    return briefing_id


def get_briefing(conn: Any, briefing_id: str) -> Briefing | None:
    cursor = conn.execute(
        f"SELECT {_BRIEFING_COLUMNS} FROM briefings WHERE id = ?",
        (briefing_id,),
    )
    row = cursor.fetchone()
    return _row_to_briefing(row) if row else None


def list_briefing_candidates(conn: Any, start_of_day_iso: str) -> list[Briefing]:
    cursor = conn.execute(
        f"""
        SELECT {_BRIEFING_COLUMNS}
        FROM briefings
        WHERE status = ?
          AND (last_executed_at IS NULL OR last_executed_at < ?)
        ORDER BY CASE WHEN last_executed_at IS NULL THEN 0 ELSE 1 END, last_executed_at, created_at
        """,
        (BriefingStatus.ACTIVE.value, start_of_day_iso),
    )
    return [_row_to_briefing(row) for row in cursor.fetchall()]


def mark_briefing_queued(conn: Any, briefing_id: str, now_iso: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, queued_at = ?, processing_started_at = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            BriefingStatus.QUEUED.value,
            now_iso,
            now_iso,
            briefing_id,
            BriefingStatus.ACTIVE.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def revert_briefing_queued(conn: Any, briefing_id: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, queued_at = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            BriefingStatus.ACTIVE.value,
            utc_now_iso(),
            briefing_id,
            BriefingStatus.QUEUED.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def start_briefing_processing(conn: Any, briefing_id: str, now_iso: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, processing_started_at = ?, queued_at = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            BriefingStatus.PROCESSING.value,
            now_iso,
            now_iso,
            briefing_id,
            BriefingStatus.QUEUED.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def complete_briefing(conn: Any, briefing_id: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, queued_at = NULL, processing_started_at = NULL,
            error_message = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            BriefingStatus.ACTIVE.value,
            utc_now_iso(),
            briefing_id,
            BriefingStatus.PROCESSING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def fail_briefing(conn: Any, briefing_id: str, error_message: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, queued_at = NULL, processing_started_at = NULL,
            error_message = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            BriefingStatus.ERROR.value,
            error_message,
            utc_now_iso(),
            briefing_id,
            BriefingStatus.PROCESSING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def recover_stuck_briefings(conn: Any, threshold_iso: str, error_message: str) -> int:
    cursor = conn.execute(
        """
        UPDATE briefings
        SET status = ?, queued_at = NULL, processing_started_at = NULL,
            error_message = ?, updated_at = ?
        WHERE (status = ? AND queued_at < ?)
           OR (status = ? AND processing_started_at < ?)
        """,
        (
            BriefingStatus.ERROR.value,
            error_message,
            utc_now_iso(),
            BriefingStatus.QUEUED.value,
            threshold_iso,
            BriefingStatus.PROCESSING.value,
            threshold_iso,
        ),
    )
    conn.commit()
    return max(cursor.rowcount, 0)


def count_stuck_briefings(conn: Any, threshold_iso: str) -> int:
    cursor = conn.execute(
        """
        SELECT COUNT(*) FROM briefings
        WHERE (status = ? AND queued_at < ?)
           OR (status = ? AND processing_started_at < ?)
        """,
        (
            BriefingStatus.QUEUED.value,
            threshold_iso,
            BriefingStatus.PROCESSING.value,
            threshold_iso,
        ),
    )
    return int(cursor.fetchone()[0])


# Sources


def create_source(
    conn: Any,
    briefing_id: str,
    name: str,
    url: str | None,
    source_type: SourceType | str,
    *,
    refresh_interval_minutes: int | None = 15,
    extraction_prompt: str | None = None,
    status: SourceStatus | str = SourceStatus.ACTIVE,
) -> str:
    source_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO sources
            (id, briefing_id, name, url, type, status, fetch_status,
             refresh_interval_minutes, extraction_prompt, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source_id,
            briefing_id,
            name,
            url,
            SourceType(source_type).value,
            SourceStatus(status).value,
            FetchStatus.IDLE.value,
            refresh_interval_minutes,
            extraction_prompt,
            now,
            now,
        ),
    )
    conn.commit()
    return source_id


def get_source(conn: Any, source_id: str) -> Source | None:
    cursor = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?",
        (source_id,),
    )
    row = cursor.fetchone()
    return _row_to_source(row) if row else None


def list_sources_for_briefing(conn: Any, briefing_id: str) -> list[Source]:
    cursor = conn.execute(
        f"""
        SELECT {_SOURCE_COLUMNS}
        FROM sources
        WHERE briefing_id = ? AND status != ?
        ORDER BY created_at
        """,
        (briefing_id, SourceStatus.DELETED.value),
    )
    return [_row_to_source(row) for row in cursor.fetchall()]


def list_fetch_candidates(
    conn: Any,
    statuses: Iterable[SourceStatus],
    cutoff_iso: str,
    limit: int,
) -> list[tuple[Source, str]]:
    """Return (source, owning user id) pairs idle and not fetched since the cutoff.

    Never-fetched sources come first, then the least recently fetched.
    """
    status_values = [SourceStatus(status).value for status in statuses]
    placeholders = ",".join(["?"] * len(status_values))
    columns = ", ".join(f"s.{col.strip()}" for col in _SOURCE_COLUMNS.split(","))
    cursor = conn.execute(
        f"""
        SELECT {columns}, b.user_id
        FROM sources s
        JOIN briefings b ON b.id = s.briefing_id
        WHERE s.status IN ({placeholders})
          AND s.fetch_status = ?
          AND (s.last_fetched_at IS NULL OR s.last_fetched_at < ?)
        ORDER BY CASE WHEN s.last_fetched_at IS NULL THEN 0 ELSE 1 END, s.last_fetched_at
        LIMIT ?
        """,
        (*status_values, FetchStatus.IDLE.value, cutoff_iso, limit),
    )
    return [(_row_to_source(row[:-1]), row[-1]) for row in cursor.fetchall()]


def mark_source_queued(conn: Any, source_id: str, now_iso: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?, queued_at = ?, fetch_started_at = NULL, updated_at = ?
        WHERE id = ? AND fetch_status = ?
        """,
        (FetchStatus.QUEUED.value, now_iso, now_iso, source_id, FetchStatus.IDLE.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def revert_source_queued(conn: Any, source_id: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?, queued_at = NULL, fetch_started_at = NULL, updated_at = ?
        WHERE id = ? AND fetch_status = ?
        """,
        (FetchStatus.IDLE.value, utc_now_iso(), source_id, FetchStatus.QUEUED.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def reset_source_fetch_status(conn: Any, source_id: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?, queued_at = NULL, fetch_started_at = NULL, updated_at = ?
        WHERE id = ?
        """,
        (FetchStatus.IDLE.value, utc_now_iso(), source_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def start_source_fetch(conn: Any, source_id: str, now_iso: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?, fetch_started_at = ?, queued_at = NULL, updated_at = ?
        WHERE id = ? AND fetch_status IN (?, ?)
        """,
        (
            FetchStatus.FETCHING.value,
            now_iso,
            now_iso,
            source_id,
            FetchStatus.IDLE.value,
            FetchStatus.QUEUED.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def complete_source_fetch(conn: Any, source_id: str, now_iso: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?,
            last_fetched_at = ?,
            last_error = NULL,
            queued_at = NULL,
            fetch_started_at = NULL,
            status = CASE WHEN status = ? THEN ? ELSE status END,
            updated_at = ?
        WHERE id = ? AND fetch_status = ?
        """,
        (
            FetchStatus.IDLE.value,
            now_iso,
            SourceStatus.ERROR.value,
            SourceStatus.ACTIVE.value,
            now_iso,
            source_id,
            FetchStatus.FETCHING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def fail_source_fetch(conn: Any, source_id: str, error: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?,
            status = ?,
            last_error = ?,
            queued_at = NULL,
            fetch_started_at = NULL,
            updated_at = ?
        WHERE id = ? AND fetch_status = ?
        """,
        (
            FetchStatus.IDLE.value,
            SourceStatus.ERROR.value,
            error,
            utc_now_iso(),
            source_id,
            FetchStatus.FETCHING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def recover_stuck_sources(conn: Any, threshold_iso: str) -> int:
    cursor = conn.execute(
        """
        UPDATE sources
        SET fetch_status = ?, queued_at = NULL, fetch_started_at = NULL, updated_at = ?
        WHERE (fetch_status = ? AND queued_at < ?)
           OR (fetch_status = ? AND fetch_started_at < ?)
        """,
        (
            FetchStatus.IDLE.value,
            utc_now_iso(),
            FetchStatus.QUEUED.value,
            threshold_iso,
            FetchStatus.FETCHING.value,
            threshold_iso,
        ),
    )
    conn.commit()
    return max(cursor.rowcount, 0)


def count_stuck_sources(conn: Any, threshold_iso: str) -> int:
    cursor = conn.execute(
        """
        SELECT COUNT(*) FROM sources
        WHERE (fetch_status = ? AND queued_at < ?)
           OR (fetch_status = ? AND fetch_started_at < ?)
        """,
        (
            FetchStatus.QUEUED.value,
            threshold_iso,
            FetchStatus.FETCHING.value,
            threshold_iso,
        ),
    )
    return int(cursor.fetchone()[0])


def count_sources_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM sources GROUP BY status")
    return {row[0]: int(row[1]) for row in cursor.fetchall()}


def record_source_run(
    conn: Any,
    source_id: str,
    started_at: str,
    finished_at: str,
    status: str,
    items_found: int,
    items_created: int,
    duration_ms: int,
    error: str | None,
) -> None:
    conn.execute(
        """
        INSERT INTO source_runs
            (id, source_id, started_at, finished_at, status, items_found,
             items_created, duration_ms, error)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            new_id(),
            source_id,
            started_at,
            finished_at,
            status,
            items_found,
            items_created,
            duration_ms,
            error,
        ),
    )
    conn.commit()


def list_source_runs(conn: Any, source_id: str, limit: int = 20) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT started_at, finished_at, status, items_found, items_created, duration_ms, error
        FROM source_runs
        WHERE source_id = ?
        ORDER BY started_at DESC
        LIMIT ?
        """,
        (source_id, limit),
    )
    return [
        {
            "started_at": row[0],
            "finished_at": row[1],
            "status": row[2],
            "items_found": int(row[3]),
            "items_created": int(row[4]),
            "duration_ms": int(row[5]),
            "error": row[6],
        }
        for row in cursor.fetchall()
    ]


# News items


def news_item_exists(conn: Any, source_id: str, guid: str) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM news_items WHERE source_id = ? AND guid = ?",
        (source_id, guid),
    )
    return cursor.fetchone() is not None


def insert_news_items(
    conn: Any,
    source_id: str,
    items: Iterable[FetchedItem],
    status: ItemStatus,
) -> int:
    created = 0
    for item in items:
        if news_item_exists(conn, source_id, item.guid):
            continue
        now = utc_now_iso()
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO news_items
                (id, source_id, guid, title, link, author, published_at, raw_content,
                 clean_content, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                new_id(),
                source_id,
                item.guid,
                item.title,
                item.link,
                item.author,
                item.published_at,
                item.raw_content,
                item.clean_content,
                ItemStatus(status).value,
                now,
                now,
            ),
        )
        if cursor.rowcount == 1:
            created += 1
    conn.commit()
    return created


def get_news_item(conn: Any, item_id: str) -> NewsItem | None:
    cursor = conn.execute(
        f"SELECT {_ITEM_COLUMNS} FROM news_items WHERE id = ?",
        (item_id,),
    )
    row = cursor.fetchone()
    return _row_to_item(row) if row else None


def list_news_items_for_source(conn: Any, source_id: str) -> list[NewsItem]:
    cursor = conn.execute(
        f"SELECT {_ITEM_COLUMNS} FROM news_items WHERE source_id = ? ORDER BY created_at",
        (source_id,),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


def get_item_context(conn: Any, item_id: str) -> tuple[str | None, str | None]:
    """Return (owning user id, briefing criteria) for an item."""
    cursor = conn.execute(
        """
        SELECT b.user_id, b.briefing_criteria
        FROM news_items n
        JOIN sources s ON s.id = n.source_id
        JOIN briefings b ON b.id = s.briefing_id
        WHERE n.id = ?
        """,
        (item_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None, None
    return row[0], row[1]


def list_new_item_candidates(conn: Any, limit: int) -> list[tuple[str, str]]:
    cursor = conn.execute(
        """
        SELECT n.id, b.user_id
        FROM news_items n
        JOIN sources s ON s.id = n.source_id
        JOIN briefings b ON b.id = s.briefing_id
        WHERE n.status = ?
        ORDER BY n.created_at
        LIMIT ?
        """,
        (ItemStatus.NEW.value, limit),
    )
    return [(row[0], row[1]) for row in cursor.fetchall()]


def _transition_item(conn: Any, item_id: str, from_status: ItemStatus, to_status: ItemStatus) -> bool:
    cursor = conn.execute(
        "UPDATE news_items SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
        (to_status.value, utc_now_iso(), item_id, from_status.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def mark_item_pending(conn: Any, item_id: str) -> bool:
    return _transition_item(conn, item_id, ItemStatus.NEW, ItemStatus.PENDING)


def revert_item_pending(conn: Any, item_id: str) -> bool:
    return _transition_item(conn, item_id, ItemStatus.PENDING, ItemStatus.NEW)


def start_item_processing(conn: Any, item_id: str) -> bool:
    return _transition_item(conn, item_id, ItemStatus.PENDING, ItemStatus.PROCESSING)


def complete_item_enrichment(conn: Any, item_id: str, result: EnrichmentResult) -> bool:
    cursor = conn.execute(
        """
        UPDATE news_items
        SET summary = ?, tags_json = ?, score = ?, score_reasoning = ?,
            status = ?, error_message = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            result.summary,
            json_dumps(result.tags),
            result.score,
            result.score_reasoning,
            ItemStatus.DONE.value,
            utc_now_iso(),
            item_id,
            ItemStatus.PROCESSING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def fail_item(conn: Any, item_id: str, error_message: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE news_items
        SET status = ?, error_message = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            ItemStatus.ERROR.value,
            error_message,
            utc_now_iso(),
            item_id,
            ItemStatus.PROCESSING.value,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def recover_stuck_items(conn: Any, threshold_iso: str, error_message: str) -> int:
    cursor = conn.execute(
        """
        UPDATE news_items
        SET status = ?, error_message = ?, updated_at = ?
        WHERE status IN (?, ?) AND updated_at < ?
        """,
        (
            ItemStatus.ERROR.value,
            error_message,
            utc_now_iso(),
            ItemStatus.PENDING.value,
            ItemStatus.PROCESSING.value,
            threshold_iso,
        ),
    )
    conn.commit()
    return max(cursor.rowcount, 0)


def count_stuck_items(conn: Any, threshold_iso: str) -> int:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM news_items WHERE status IN (?, ?) AND updated_at < ?",
        (ItemStatus.PENDING.value, ItemStatus.PROCESSING.value, threshold_iso),
    )
    return int(cursor.fetchone()[0])


def count_items_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM news_items GROUP BY status")
    return {row[0]: int(row[1]) for row in cursor.fetchall()}


def find_top_scored_items(
    conn: Any,
    source_ids: list[str],
    since_iso: str,
    limit: int,
) -> list[NewsItem]:
    if not source_ids:
        return []
    placeholders = ",".join(["?"] * len(source_ids))
    cursor = conn.execute(
        f"""
        SELECT {_ITEM_COLUMNS}
        FROM news_items
        WHERE source_id IN ({placeholders})
          AND status = ?
          AND published_at > ?
          AND score IS NOT NULL
        ORDER BY score DESC, published_at DESC
        LIMIT ?
        """,
        (*source_ids, ItemStatus.DONE.value, since_iso, limit),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


# Reports


def create_report(
    conn: Any,
    briefing_id: str,
    items: list[NewsItem],
    now_iso: str,
) -> Report:
    """Persist a report, its items and the briefing's last execution time atomically."""
    report_id = new_id()
    report_items = [
        ReportItem(
            id=new_id(),
            report_id=report_id,
            news_item_id=item.id,
            score=int(item.score or 0),
            position=position,
            title=item.title,
            link=item.link,
        )
        for position, item in enumerate(items, start=1)
    ]
    with conn.transaction():
        conn.execute(
            "INSERT INTO reports (id, briefing_id, status, generated_at) VALUES (?, ?, ?, ?)",
            (report_id, briefing_id, REPORT_STATUS_GENERATED, now_iso),
        )
        if report_items:
            conn.executemany(
                """
                INSERT INTO report_items (id, report_id, news_item_id, score, position)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (entry.id, entry.report_id, entry.news_item_id, entry.score, entry.position)
                    for entry in report_items
                ],
            )
        conn.execute(
            "UPDATE briefings SET last_executed_at = ?, updated_at = ? WHERE id = ?",
            (now_iso, now_iso, briefing_id),
        )
    return Report(
        id=report_id,
        briefing_id=briefing_id,
        status=REPORT_STATUS_GENERATED,
        generated_at=now_iso,
        items=report_items,
    )


def get_report(conn: Any, report_id: str) -> Report | None:
    cursor = conn.execute(
        "SELECT id, briefing_id, status, generated_at FROM reports WHERE id = ?",
        (report_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    items_cursor = conn.execute(
        """
        SELECT ri.id, ri.report_id, ri.news_item_id, ri.score, ri.position, n.title, n.link
        FROM report_items ri
        LEFT JOIN news_items n ON n.id = ri.news_item_id
        WHERE ri.report_id = ?
        ORDER BY ri.position
        """,
        (report_id,),
    )
    items = [
        ReportItem(
            id=item_row[0],
            report_id=item_row[1],
            news_item_id=item_row[2],
            score=int(item_row[3]),
            position=int(item_row[4]),
            title=item_row[5],
            link=item_row[6],
        )
        for item_row in items_cursor.fetchall()
    ]
    return Report(id=row[0], briefing_id=row[1], status=row[2], generated_at=row[3], items=items)


def list_reports_for_briefing(conn: Any, briefing_id: str) -> list[Report]:
    cursor = conn.execute(
        "SELECT id FROM reports WHERE briefing_id = ? ORDER BY generated_at",
        (briefing_id,),
    )
    reports = []
    for (report_id,) in cursor.fetchall():
        report = get_report(conn, report_id)
        if report is not None:
            reports.append(report)
    return reports


def _row_to_source(row: tuple) -> Source:
    (
        source_id,
        briefing_id,
        name,
        url,
        source_type,
        status,
        fetch_status,
        refresh_interval_minutes,
        last_fetched_at,
        queued_at,
        fetch_started_at,
        last_error,
        extraction_prompt,
    ) = row
    return Source(
        id=source_id,
        briefing_id=briefing_id,
        name=name,
        url=url,
        type=SourceType(source_type),
        status=SourceStatus(status),
        fetch_status=FetchStatus(fetch_status),
        refresh_interval_minutes=(
            int(refresh_interval_minutes) if refresh_interval_minutes is not None else None
        ),
        last_fetched_at=last_fetched_at,
        queued_at=queued_at,
        fetch_started_at=fetch_started_at,
        last_error=last_error,
        extraction_prompt=extraction_prompt,
    )


def _row_to_briefing(row: tuple) -> Briefing:
    (
        briefing_id,
        user_id,
        title,
        description,
        briefing_criteria,
        frequency,
        schedule_day_of_week,
        schedule_time,
        timezone,
        status,
        email_delivery_enabled,
        last_executed_at,
        queued_at,
        processing_started_at,
        error_message,
    ) = row
    return Briefing(
        id=briefing_id,
        user_id=user_id,
        title=title,
        description=description,
        briefing_criteria=briefing_criteria,
        frequency=BriefingFrequency(frequency),
        schedule_day_of_week=schedule_day_of_week,
        schedule_time=schedule_time,
        timezone=timezone,
        status=BriefingStatus(status),
        email_delivery_enabled=bool(email_delivery_enabled),
        last_executed_at=last_executed_at,
        queued_at=queued_at,
        processing_started_at=processing_started_at,
        error_message=error_message,
    )


def _row_to_item(row: tuple) -> NewsItem:
    (
        item_id,
        source_id,
        guid,
        title,
        link,
        author,
        published_at,
        raw_content,
        clean_content,
        summary,
        tags_json,
        score,
        score_reasoning,
        status,
        error_message,
        created_at,
        updated_at,
    ) = row
    try:
        tags = json.loads(tags_json) if tags_json else []
    except json.JSONDecodeError:
        tags = []
    return NewsItem(
        id=item_id,
        source_id=source_id,
        guid=guid,
        title=title,
        link=link,
        author=author,
        published_at=published_at,
        raw_content=raw_content,
        clean_content=clean_content,
        summary=summary,
        tags=list(tags),
        score=int(score) if score is not None else None,
        score_reasoning=score_reasoning,
        status=ItemStatus(status),
        error_message=error_message,
        created_at=created_at,
        updated_at=updated_at,
    )
