from __future__ import annotations

import logging
from typing import Any, Callable

from .utils import utc_now_iso

Migration = Callable[[Any], None]


def apply_migrations(conn: Any) -> None:
    # SQL here stays portable between SQLite and PostgreSQL; db.DBConn
    # rewrites placeholders and INSERT OR IGNORE for postgres.
    logger = logging.getLogger("briefcore.migrations")
    if conn.backend == "sqlite":
        conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE REFERENCES users(id),
            plan TEXT NOT NULL DEFAULT 'FREE',
            credits_balance INTEGER NOT NULL DEFAULT 0,
            monthly_credits INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS credit_usage_logs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            credits_used INTEGER NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS briefings (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            title TEXT NOT NULL,
            description TEXT NULL,
            briefing_criteria TEXT NULL,
            frequency TEXT NOT NULL DEFAULT 'DAILY',
            schedule_day_of_week TEXT NULL,
            schedule_time TEXT NOT NULL DEFAULT '08:00',
            timezone TEXT NOT NULL DEFAULT 'UTC',
            status TEXT NOT NULL DEFAULT 'ACTIVE',
            email_delivery_enabled INTEGER NOT NULL DEFAULT 0,
            last_executed_at TEXT NULL,
            queued_at TEXT NULL,
            processing_started_at TEXT NULL,
            error_message TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_briefings_scheduling ON briefings(status, last_executed_at)"
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_briefings_stuck_recovery
            ON briefings(status, queued_at, processing_started_at)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            briefing_id TEXT NOT NULL REFERENCES briefings(id),
            name TEXT NOT NULL,
            url TEXT NULL,
            type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'ACTIVE',
            fetch_status TEXT NOT NULL DEFAULT 'IDLE',
            refresh_interval_minutes INTEGER NULL DEFAULT 15,
            last_fetched_at TEXT NULL,
            queued_at TEXT NULL,
            fetch_started_at TEXT NULL,
            last_error TEXT NULL,
            extraction_prompt TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sources_briefing ON sources(briefing_id)")
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_sources_fetch_scheduling
            ON sources(status, fetch_status, last_fetched_at)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS news_items (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            guid TEXT NOT NULL,
            title TEXT NOT NULL,
            link TEXT NULL,
            author TEXT NULL,
            published_at TEXT NOT NULL,
            raw_content TEXT NULL,
            clean_content TEXT NULL,
            summary TEXT NULL,
            tags_json TEXT NULL,
            score INTEGER NULL,
            score_reasoning TEXT NULL,
            status TEXT NOT NULL DEFAULT 'NEW',
            error_message TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(source_id, guid)
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_news_items_scheduling ON news_items(status, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_news_items_stuck_recovery ON news_items(status, updated_at)"
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_news_items_report
            ON news_items(source_id, status, published_at)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reports (
            id TEXT PRIMARY KEY,
            briefing_id TEXT NOT NULL REFERENCES briefings(id),
            status TEXT NOT NULL,
            generated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS report_items (
            id TEXT PRIMARY KEY,
            report_id TEXT NOT NULL REFERENCES reports(id),
            news_item_id TEXT NOT NULL REFERENCES news_items(id),
            score INTEGER NOT NULL,
            position INTEGER NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_report_items_report ON report_items(report_id, position)"
    )


def _migration_source_runs(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS source_runs (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            status TEXT NOT NULL,
            items_found INTEGER NOT NULL DEFAULT 0,
            items_created INTEGER NOT NULL DEFAULT 0,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            error TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_runs_source ON source_runs(source_id, started_at)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_source_runs", _migration_source_runs),
    ]
