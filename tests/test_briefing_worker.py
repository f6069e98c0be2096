from datetime import timedelta
from email.message import EmailMessage

import pytest
from conftest import fetched

from briefcore.llm import MockAiService
from briefcore.models import BriefingStatus, ItemStatus, REPORT_STATUS_GENERATED
from briefcore.processors.briefing import BriefingWorker
from briefcore.services.email_delivery import LogEmailSender, ReportEmailDeliveryService
from briefcore.storage import (
    create_briefing,
    create_source,
    get_briefing,
    insert_news_items,
    list_reports_for_briefing,
    mark_briefing_queued,
    start_briefing_processing,
)
from briefcore.utils import isoformat_utc, utc_now, utc_now_iso


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)


class ExplodingEmailService:
    def __init__(self):
        self.calls = 0

    def send_report_email(self, briefing, report):
        self.calls += 1
        raise RuntimeError("smtp down")


def _scored_item(conn, source_id, guid, score, hours_ago=1, status=ItemStatus.DONE):
    published_at = isoformat_utc(utc_now() - timedelta(hours=hours_ago))
    insert_news_items(conn, source_id, [fetched(guid, published_at=published_at)], status)
    conn.execute("UPDATE news_items SET score = ? WHERE guid = ?", (score, guid))
    conn.commit()


def _queue(conn, briefing_id):
    assert mark_briefing_queued(conn, briefing_id, utc_now_iso())


def test_empty_report_is_still_generated(conn, connect, config, briefing_id):
    _queue(conn, briefing_id)

    BriefingWorker(connect, config.jobs.briefing_execution).process(briefing_id)

    briefing = get_briefing(conn, briefing_id)
    reports = list_reports_for_briefing(conn, briefing_id)
    assert briefing.status == BriefingStatus.ACTIVE
    assert briefing.last_executed_at is not None
    assert briefing.queued_at is None
    assert briefing.processing_started_at is None
    assert len(reports) == 1
    assert reports[0].status == REPORT_STATUS_GENERATED
    assert reports[0].is_empty


def test_report_holds_top_scored_items_in_order(conn, connect, config, briefing_id, source_id):
    for score in range(12):
        _scored_item(conn, source_id, f"item-{score}", score)
    _scored_item(conn, source_id, "unscored-new", 99, status=ItemStatus.NEW)
    _scored_item(conn, source_id, "too-old", 100, hours_ago=72)
    _queue(conn, briefing_id)

    BriefingWorker(connect, config.jobs.briefing_execution).process(briefing_id)

    report = list_reports_for_briefing(conn, briefing_id)[0]
    assert len(report.items) == config.jobs.briefing_execution.max_report_items
    assert [entry.score for entry in report.items] == list(range(11, 1, -1))
    assert [entry.position for entry in report.items] == list(range(1, 11))
    assert report.items[0].title == "Item item-11"


def test_second_run_only_considers_items_since_last_execution(conn, connect, config, briefing_id, source_id):
    _scored_item(conn, source_id, "old", 50)
    worker = BriefingWorker(connect, config.jobs.briefing_execution)
    _queue(conn, briefing_id)
    worker.process(briefing_id)

    _queue(conn, briefing_id)
    worker.process(briefing_id)

    reports = list_reports_for_briefing(conn, briefing_id)
    assert [len(report.items) for report in reports] == [1, 0]


def test_failure_marks_briefing_error(monkeypatch, conn, connect, config, briefing_id, source_id):
    def broken(*args, **kwargs):
        raise RuntimeError("query timed out")

    monkeypatch.setattr("briefcore.processors.briefing.find_top_scored_items", broken)
    _queue(conn, briefing_id)

    BriefingWorker(connect, config.jobs.briefing_execution).process(briefing_id)

    briefing = get_briefing(conn, briefing_id)
    assert briefing.status == BriefingStatus.ERROR
    assert briefing.error_message == "Processing failed: query timed out"
    assert briefing.last_executed_at is None
    assert list_reports_for_briefing(conn, briefing_id) == []


def test_stale_pop_is_ignored(conn, connect, config, briefing_id):
    _queue(conn, briefing_id)
    assert start_briefing_processing(conn, briefing_id, utc_now_iso())

    BriefingWorker(connect, config.jobs.briefing_execution).process(briefing_id)

    assert get_briefing(conn, briefing_id).status == BriefingStatus.PROCESSING
    assert list_reports_for_briefing(conn, briefing_id) == []


def test_active_briefing_popped_without_queue_mark_is_ignored(conn, connect, config, briefing_id):
    BriefingWorker(connect, config.jobs.briefing_execution).process(briefing_id)

    assert list_reports_for_briefing(conn, briefing_id) == []


def test_email_failure_keeps_the_report(conn, connect, config, briefing_id, source_id):
    _scored_item(conn, source_id, "a", 80)
    email = ExplodingEmailService()
    _queue(conn, briefing_id)

    BriefingWorker(connect, config.jobs.briefing_execution, email).process(briefing_id)

    assert email.calls == 1
    assert get_briefing(conn, briefing_id).status == BriefingStatus.ACTIVE
    assert len(list_reports_for_briefing(conn, briefing_id)[0].items) == 1


def test_report_email_is_sent_when_enabled(conn, connect, config, user_id):
    briefing_id = create_briefing(conn, user_id, "Mailed", email_delivery_enabled=True)
    mailed_source = create_source(conn, briefing_id, "feed", "https://example.com/m", "RSS")
    _scored_item(conn, mailed_source, "mailed", 70)
    sender = RecordingSender()
    email = ReportEmailDeliveryService(connect, MockAiService(), sender, "briefings@example.com")
    _queue(conn, briefing_id)

    BriefingWorker(connect, config.jobs.briefing_execution, email).process(briefing_id)

    assert len(sender.sent) == 1
    message = sender.sent[0]
    assert message["To"] == "reader@example.com"
    assert message["Subject"] == "Mailed: key developments"
    assert "Item mailed" in message.get_content()


def test_execute_now_builds_report_without_status_change(conn, connect, config, briefing_id, source_id):
    _scored_item(conn, source_id, "a", 42)

    report = BriefingWorker(connect, config.jobs.briefing_execution).execute_now(briefing_id)

    briefing = get_briefing(conn, briefing_id)
    assert [entry.score for entry in report.items] == [42]
    assert briefing.status == BriefingStatus.ACTIVE
    assert briefing.last_executed_at == report.generated_at


def test_execute_now_unknown_briefing(connect, config):
    with pytest.raises(LookupError):
        BriefingWorker(connect, config.jobs.briefing_execution).execute_now("missing")


def test_log_sender_keeps_no_message_history():
    sender = LogEmailSender()
    message = EmailMessage()
    message["To"] = "reader@example.com"
    message["Subject"] = "Digest"

    for _ in range(3):
        sender.send(message)

    assert not hasattr(sender, "sent")
