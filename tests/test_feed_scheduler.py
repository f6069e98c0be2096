from datetime import timedelta

from briefcore.jobs.feed_scheduler import FeedSchedulerJob, is_source_due
from briefcore.models import FetchStatus, SourceStatus, SourceType
from briefcore.queue import BoundedJobQueue
from briefcore.storage import (
    complete_source_fetch,
    create_briefing,
    create_source,
    create_user,
    get_source,
    set_credits,
    start_source_fetch,
)
from briefcore.utils import isoformat_utc, utc_now


class RejectingQueue(BoundedJobQueue):
    def enqueue(self, entity_id):
        return False


def _add_source(conn, briefing_id, name, **kwargs):
    return create_source(conn, briefing_id, name, f"https://example.com/{name}", SourceType.RSS, **kwargs)


def _mark_fetched(conn, source_id, minutes_ago):
    at = isoformat_utc(utc_now() - timedelta(minutes=minutes_ago))
    assert start_source_fetch(conn, source_id, at)
    assert complete_source_fetch(conn, source_id, at)


def test_only_as_many_sources_as_capacity_are_queued(conn, connect, config, briefing_id):
    first = _add_source(conn, briefing_id, "a")
    second = _add_source(conn, briefing_id, "b")
    fetch_queue = BoundedJobQueue("fetch", 1)

    enqueued = FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run()

    statuses = sorted(get_source(conn, sid).fetch_status for sid in (first, second))
    assert enqueued == 1
    assert fetch_queue.size() == 1
    assert statuses == [FetchStatus.IDLE, FetchStatus.QUEUED]
    queued_id = fetch_queue.poll(0)
    queued = get_source(conn, queued_id)
    assert queued.queued_at is not None


def test_failed_hand_off_reverts_to_idle(conn, connect, config, source_id):
    fetch_queue = RejectingQueue("fetch", 5)

    enqueued = FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run()

    source = get_source(conn, source_id)
    assert enqueued == 0
    assert source.fetch_status == FetchStatus.IDLE
    assert source.queued_at is None


def test_full_queue_skips_the_cycle(conn, connect, config, source_id):
    fetch_queue = BoundedJobQueue("fetch", 1)
    fetch_queue.enqueue("other")

    assert FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run() == 0
    assert get_source(conn, source_id).fetch_status == FetchStatus.IDLE


def test_owner_without_credits_is_skipped(conn, connect, config, user_id, source_id):
    broke = create_user(conn, "broke@example.com", credits=0)
    other_briefing = create_briefing(conn, broke, "No credits")
    skipped = _add_source(conn, other_briefing, "skipped")
    fetch_queue = BoundedJobQueue("fetch", 10)

    enqueued = FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run()

    assert enqueued == 1
    assert fetch_queue.poll(0) == source_id
    assert get_source(conn, skipped).fetch_status == FetchStatus.IDLE

    set_credits(conn, user_id, 0)
    _mark_fetched(conn, source_id, 60)
    assert FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run() == 0


def test_recently_fetched_sources_wait_for_their_interval(conn, connect, config, briefing_id):
    fresh = _add_source(conn, briefing_id, "fresh", refresh_interval_minutes=15)
    stale = _add_source(conn, briefing_id, "stale", refresh_interval_minutes=15)
    _mark_fetched(conn, fresh, 5)
    _mark_fetched(conn, stale, 20)
    fetch_queue = BoundedJobQueue("fetch", 10)

    FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run()

    assert fetch_queue.poll(0) == stale
    assert fetch_queue.poll(0) is None
    assert get_source(conn, fresh).fetch_status == FetchStatus.IDLE


def test_paused_and_error_sources_are_not_scheduled(conn, connect, config, briefing_id):
    _add_source(conn, briefing_id, "paused", status=SourceStatus.PAUSED)
    _add_source(conn, briefing_id, "broken", status=SourceStatus.ERROR)
    fetch_queue = BoundedJobQueue("fetch", 10)

    assert FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run() == 0


def test_error_sources_are_retried_when_enabled(conn, connect, raw_config, briefing_id):
    from briefcore.config import build_config

    raw_config["jobs"]["feed_ingestion"]["retry_error_sources"] = True
    config = build_config(raw_config)
    broken = _add_source(conn, briefing_id, "broken", status=SourceStatus.ERROR)
    fetch_queue = BoundedJobQueue("fetch", 10)

    assert FeedSchedulerJob(connect, fetch_queue, config.jobs.feed_ingestion).run() == 1
    assert fetch_queue.poll(0) == broken


def test_is_source_due(conn, source_id):
    now = utc_now()
    source = get_source(conn, source_id)
    assert is_source_due(source, now, 15)

    _mark_fetched(conn, source_id, 10)
    source = get_source(conn, source_id)
    assert not is_source_due(source, now, 15)
    assert is_source_due(source, now + timedelta(minutes=5, seconds=1), 15)


def test_missing_interval_uses_default(conn, briefing_id):
    source_id = _add_source(conn, briefing_id, "default", refresh_interval_minutes=None)
    _mark_fetched(conn, source_id, 20)
    source = get_source(conn, source_id)

    assert is_source_due(source, utc_now(), 15)
    assert not is_source_due(source, utc_now(), 30)
