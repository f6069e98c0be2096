from __future__ import annotations

import copy
from contextlib import closing

import pytest

from briefcore.config import DEFAULT_CONFIG, build_config
from briefcore.fetchers.base import SourceFetcher
from briefcore.models import FetchedItem, SourceType, SourceValidationResult
from briefcore.storage import create_briefing, create_source, create_user, init_db


class StaticFetcher(SourceFetcher):
    """Returns canned items, or raises ``error`` when set."""

    def __init__(self, source_type=SourceType.RSS, items=None, error=None):
        self.source_type = source_type
        self.items = list(items or [])
        self.error = error
        self.calls = []

    def validate(self, locator):
        return SourceValidationResult.success(f"static:{locator}")

    def fetch(self, source, since):
        self.calls.append((source.id, since))
        if self.error is not None:
            raise self.error
        return list(self.items)


def fetched(guid, title=None, published_at="2026-01-01T00:00:00.000000+00:00", link=None):
    return FetchedItem(
        guid=guid,
        title=title or f"Item {guid}",
        link=link or f"https://example.com/{guid}",
        author=None,
        published_at=published_at,
        raw_content="<p>body</p>",
        clean_content="body",
    )


@pytest.fixture(autouse=True)
def _sqlite_only(monkeypatch):
    monkeypatch.delenv("BC_DB_URL", raising=False)
    monkeypatch.delenv("BC_CONFIG_PATH", raising=False)
    monkeypatch.delenv("BC_ADMIN_TOKEN", raising=False)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "state.sqlite3"


@pytest.fixture
def connect(db_path):
    return lambda: init_db(str(db_path))


@pytest.fixture
def conn(connect):
    with closing(connect()) as connection:
        yield connection


@pytest.fixture
def raw_config(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["paths"]["data_dir"] = str(tmp_path / "data")
    cfg["paths"]["state_db"] = str(tmp_path / "data" / "state.sqlite3")
    cfg["fetch"]["http"]["max_retries"] = 0
    cfg["jobs"]["workers"]["poll_timeout_seconds"] = 0.05
    cfg["jobs"]["workers"]["shutdown_grace_seconds"] = 2.0
    return cfg


@pytest.fixture
def config(raw_config):
    return build_config(raw_config)


@pytest.fixture
def user_id(conn):
    return create_user(conn, "reader@example.com", credits=100)


@pytest.fixture
def briefing_id(conn, user_id):
    return create_briefing(conn, user_id, "Morning tech", briefing_criteria="AI and databases")


@pytest.fixture
def source_id(conn, briefing_id):
    return create_source(conn, briefing_id, "Example feed", "https://example.com/feed", SourceType.RSS)
