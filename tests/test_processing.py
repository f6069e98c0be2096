from conftest import fetched

from briefcore.jobs.processing_scheduler import ProcessingSchedulerJob
from briefcore.llm import MockAiService, mock_score
from briefcore.llm.service import AiServiceError
from briefcore.models import ItemStatus
from briefcore.processors.processing import ProcessingWorker
from briefcore.queue import BoundedJobQueue
from briefcore.storage import (
    get_news_item,
    get_user,
    insert_news_items,
    list_news_items_for_source,
    mark_item_pending,
    set_credits,
)


class FailingAiService(MockAiService):
    def enrich_with_score(self, title, content, briefing_criteria):
        raise AiServiceError("schema_validation_failed: score")


def _new_items(conn, source_id, *guids):
    insert_news_items(conn, source_id, [fetched(guid) for guid in guids], ItemStatus.NEW)
    return [item.id for item in list_news_items_for_source(conn, source_id)]


def test_scheduler_marks_new_items_pending(conn, connect, config, source_id):
    item_ids = _new_items(conn, source_id, "a", "b", "c")
    processing_queue = BoundedJobQueue("processing", 2)

    enqueued = ProcessingSchedulerJob(connect, processing_queue, config.jobs.news_processing).run()

    statuses = sorted(get_news_item(conn, item_id).status.value for item_id in item_ids)
    assert enqueued == 2
    assert statuses == ["NEW", "PENDING", "PENDING"]


def test_scheduler_skips_items_of_users_without_credits(conn, connect, config, user_id, source_id):
    _new_items(conn, source_id, "a")
    set_credits(conn, user_id, 0)

    enqueued = ProcessingSchedulerJob(
        connect, BoundedJobQueue("processing", 5), config.jobs.news_processing
    ).run()

    assert enqueued == 0


def test_worker_enriches_and_charges_a_credit(conn, connect, config, user_id, source_id):
    (item_id,) = _new_items(conn, source_id, "a")
    assert mark_item_pending(conn, item_id)

    ProcessingWorker(connect, MockAiService(), config.jobs.news_processing).process(item_id)

    item = get_news_item(conn, item_id)
    assert item.status == ItemStatus.DONE
    assert item.score == mock_score("Item a")
    assert item.tags == ["Technology", "News"]
    assert item.summary.startswith("This is a mock summary for: Item a")
    assert get_user(conn, user_id).credits_balance == 99


def test_ai_failure_marks_item_error_without_charging(conn, connect, config, user_id, source_id):
    (item_id,) = _new_items(conn, source_id, "a")
    assert mark_item_pending(conn, item_id)

    ProcessingWorker(connect, FailingAiService(), config.jobs.news_processing).process(item_id)

    item = get_news_item(conn, item_id)
    assert item.status == ItemStatus.ERROR
    assert item.error_message.startswith("Processing failed: ")
    assert "schema_validation_failed" in item.error_message
    assert get_user(conn, user_id).credits_balance == 100


def test_exhausted_credits_mark_item_error(conn, connect, config, user_id, source_id):
    (item_id,) = _new_items(conn, source_id, "a")
    assert mark_item_pending(conn, item_id)
    set_credits(conn, user_id, 0)

    ProcessingWorker(connect, MockAiService(), config.jobs.news_processing).process(item_id)

    item = get_news_item(conn, item_id)
    assert item.status == ItemStatus.ERROR
    assert item.error_message.startswith("Processing failed: Insufficient credits")
    assert item.score is None


def test_item_not_pending_is_ignored(conn, connect, config, source_id):
    (item_id,) = _new_items(conn, source_id, "a")

    ProcessingWorker(connect, MockAiService(), config.jobs.news_processing).process(item_id)

    assert get_news_item(conn, item_id).status == ItemStatus.NEW
