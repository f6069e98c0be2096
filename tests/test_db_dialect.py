from briefcore.db import _normalize_sql


def test_sqlite_sql_is_untouched():
    sql = "INSERT OR IGNORE INTO news_items (id) VALUES (?)"

    assert _normalize_sql(sql, "sqlite") == sql


def test_postgres_placeholders_and_insert_or_ignore():
    sql = "INSERT OR IGNORE INTO news_items (id, guid) VALUES (?, ?)"

    assert _normalize_sql(sql, "postgres") == (
        "INSERT INTO news_items (id, guid) VALUES (%s, %s) ON CONFLICT DO NOTHING"
    )


def test_postgres_keeps_quoted_question_marks():
    sql = "SELECT id FROM sources WHERE name = 'why?' AND id = ?"

    assert _normalize_sql(sql, "postgres") == "SELECT id FROM sources WHERE name = 'why?' AND id = %s"


def test_postgres_begin_immediate():
    assert _normalize_sql("BEGIN IMMEDIATE", "postgres") == "BEGIN"
