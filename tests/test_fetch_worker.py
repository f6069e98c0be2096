from conftest import StaticFetcher, fetched

from briefcore.fetchers.base import SourceFetchError
from briefcore.fetchers.registry import FetcherRegistry
from briefcore.models import FetchStatus, ItemStatus, SourceStatus, SourceType
from briefcore.processors.fetch import FetchWorker
from briefcore.storage import (
    create_source,
    get_source,
    list_news_items_for_source,
    list_source_runs,
    mark_source_queued,
    start_source_fetch,
)
from briefcore.utils import MAX_ERROR_LENGTH, utc_now_iso


def _worker(connect, config, fetcher):
    return FetchWorker(connect, FetcherRegistry([fetcher]), config.jobs.feed_ingestion)


def _queue(conn, source_id):
    assert mark_source_queued(conn, source_id, utc_now_iso())


def test_first_import_stores_items_as_done(conn, connect, config, source_id):
    fetcher = StaticFetcher(items=[fetched("a"), fetched("b")])
    _queue(conn, source_id)

    _worker(connect, config, fetcher).process(source_id)

    source = get_source(conn, source_id)
    items = list_news_items_for_source(conn, source_id)
    assert source.fetch_status == FetchStatus.IDLE
    assert source.status == SourceStatus.ACTIVE
    assert source.last_fetched_at is not None
    assert source.queued_at is None
    assert source.fetch_started_at is None
    assert source.last_error is None
    assert {item.status for item in items} == {ItemStatus.DONE}
    assert fetcher.calls == [(source_id, None)]


def test_later_fetch_stores_new_items_and_skips_known_guids(conn, connect, config, source_id):
    fetcher = StaticFetcher(items=[fetched("a")])
    worker = _worker(connect, config, fetcher)
    _queue(conn, source_id)
    worker.process(source_id)
    first_fetch = get_source(conn, source_id).last_fetched_at

    fetcher.items = [fetched("a"), fetched("c")]
    _queue(conn, source_id)
    worker.process(source_id)

    items = {item.guid: item for item in list_news_items_for_source(conn, source_id)}
    assert set(items) == {"a", "c"}
    assert items["a"].status == ItemStatus.DONE
    assert items["c"].status == ItemStatus.NEW
    assert fetcher.calls[1] == (source_id, first_fetch)
    runs = list_source_runs(conn, source_id)
    assert [run["items_created"] for run in runs] == [1, 1]
    assert {run["status"] for run in runs} == {"ok"}


def test_refetching_the_same_items_creates_nothing(conn, connect, config, source_id):
    fetcher = StaticFetcher(items=[fetched("a"), fetched("b")])
    worker = _worker(connect, config, fetcher)
    _queue(conn, source_id)
    worker.process(source_id)
    _queue(conn, source_id)
    worker.process(source_id)

    assert len(list_news_items_for_source(conn, source_id)) == 2
    assert list_source_runs(conn, source_id)[0]["items_created"] == 0


def test_fetch_failure_marks_source_error_with_truncated_message(conn, connect, config, source_id):
    fetcher = StaticFetcher(error=SourceFetchError("x" * 5000))
    _queue(conn, source_id)

    _worker(connect, config, fetcher).process(source_id)

    source = get_source(conn, source_id)
    assert source.status == SourceStatus.ERROR
    assert source.fetch_status == FetchStatus.IDLE
    assert source.fetch_started_at is None
    assert source.last_fetched_at is None
    assert len(source.last_error) == MAX_ERROR_LENGTH
    run = list_source_runs(conn, source_id)[0]
    assert run["status"] == "error"
    assert run["items_created"] == 0


def test_unexpected_exception_is_recorded_not_raised(conn, connect, config, source_id):
    fetcher = StaticFetcher(error=KeyError("entries"))
    _queue(conn, source_id)

    _worker(connect, config, fetcher).process(source_id)

    assert get_source(conn, source_id).status == SourceStatus.ERROR


def test_missing_fetcher_fails_the_source(conn, connect, config, briefing_id):
    reddit_id = create_source(conn, briefing_id, "r/python", "r/python", SourceType.REDDIT)
    _queue(conn, reddit_id)

    _worker(connect, config, StaticFetcher()).process(reddit_id)

    source = get_source(conn, reddit_id)
    assert source.status == SourceStatus.ERROR
    assert "No fetcher available" in source.last_error


def test_success_clears_previous_error(conn, connect, raw_config, briefing_id):
    from briefcore.config import build_config

    raw_config["jobs"]["feed_ingestion"]["retry_error_sources"] = True
    config = build_config(raw_config)
    source_id = create_source(
        conn, briefing_id, "flaky", "https://example.com/flaky", SourceType.RSS, status=SourceStatus.ERROR
    )
    _queue(conn, source_id)

    _worker(connect, config, StaticFetcher(items=[fetched("a")])).process(source_id)

    source = get_source(conn, source_id)
    assert source.status == SourceStatus.ACTIVE
    assert source.last_error is None


def test_duplicate_pop_is_ignored(conn, connect, config, source_id):
    fetcher = StaticFetcher(items=[fetched("a")])
    assert start_source_fetch(conn, source_id, utc_now_iso())

    _worker(connect, config, fetcher).process(source_id)

    assert fetcher.calls == []
    assert get_source(conn, source_id).fetch_status == FetchStatus.FETCHING


def test_non_active_source_is_reset_without_fetching(conn, connect, config, briefing_id):
    paused = create_source(
        conn, briefing_id, "paused", "https://example.com/p", SourceType.RSS, status=SourceStatus.PAUSED
    )
    _queue(conn, paused)
    fetcher = StaticFetcher(items=[fetched("a")])

    _worker(connect, config, fetcher).process(paused)

    source = get_source(conn, paused)
    assert fetcher.calls == []
    assert source.fetch_status == FetchStatus.IDLE
    assert source.queued_at is None


def test_missing_source_is_a_no_op(connect, config):
    fetcher = StaticFetcher()

    _worker(connect, config, fetcher).process("does-not-exist")

    assert fetcher.calls == []
