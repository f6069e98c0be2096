from conftest import StaticFetcher, fetched

from briefcore.engine import Engine
from briefcore.fetchers.registry import FetcherRegistry
from briefcore.models import BriefingStatus, FetchStatus, ItemStatus
from briefcore.services.email_delivery import LogEmailSender
from briefcore.storage import (
    create_briefing,
    get_briefing,
    get_source,
    insert_news_items,
    list_news_items_for_source,
    list_reports_for_briefing,
)


def _engine(config, items=()):
    fetcher = StaticFetcher(items=list(items))
    return Engine(config, registry=FetcherRegistry([fetcher]), email_sender=LogEmailSender())


def test_run_jobs_once_drives_every_stage(conn, config, user_id, source_id):
    engine = _engine(config, [fetched("a"), fetched("b")])
    daily = create_briefing(conn, user_id, "Midnight", schedule_time="00:00")

    results = engine.run_jobs_once()

    assert results["sources_enqueued"] == 1
    assert results["sources_processed"] == 1
    assert results["items_enqueued"] == 0
    # The fixture briefing runs at 08:00 UTC, so it may be due as well.
    assert results["briefings_enqueued"] >= 1
    assert results["briefings_processed"] == results["briefings_enqueued"]
    assert get_source(conn, source_id).fetch_status == FetchStatus.IDLE
    assert {item.status for item in list_news_items_for_source(conn, source_id)} == {ItemStatus.DONE}
    assert get_briefing(conn, daily).status == BriefingStatus.ACTIVE
    assert len(list_reports_for_briefing(conn, daily)) == 1


def test_run_jobs_once_processes_new_items(conn, config, source_id):
    insert_news_items(conn, source_id, [fetched("n1")], ItemStatus.NEW)
    engine = _engine(config)

    results = engine.run_jobs_once()

    assert results["items_enqueued"] == 1
    assert results["items_processed"] == 1
    items = {item.guid: item for item in list_news_items_for_source(conn, source_id)}
    assert items["n1"].status == ItemStatus.DONE
    assert items["n1"].score is not None


def test_disabled_jobs_are_not_scheduled(raw_config):
    from briefcore.config import build_config

    raw_config["jobs"]["news_processing"]["enabled"] = False
    raw_config["jobs"]["feed_recovery"]["enabled"] = False
    engine = _engine(build_config(raw_config))

    names = {task.name for task in engine.tasks}
    assert "processing_scheduler" not in names
    assert "stuck_item_recovery" not in names
    assert "stuck_source_recovery" not in names
    assert {"feed_scheduler", "briefing_scheduler", "stuck_briefing_recovery"} <= names


def test_start_and_stop(config):
    engine = _engine(config)
    engine.start()
    engine.fetch_queue.enqueue("ghost")

    dropped = engine.stop()

    assert set(dropped) == {"fetch", "processing", "briefing"}
    assert all(not pool.running for pool in engine.pools)


def test_health_reports_each_component(conn, config):
    health = _engine(config).health()

    assert health["status"] == "UP"
    assert set(health["components"]) == {"feed_ingestion", "news_processing", "briefing_execution"}
