import json
import logging

import pytest

from briefcore import cli


@pytest.fixture
def run_cli(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("BC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(cli, "configure_logging", lambda name: logging.getLogger(name))

    def _run(*argv):
        code = cli.main(list(argv))
        out = capsys.readouterr().out.strip()
        return code, json.loads(out) if out else None

    return _run


def test_create_user_briefing_and_source(run_cli):
    code, user = run_cli("add-user", "--email", "cli@example.com", "--credits", "5")
    assert code == 0
    assert user["credits_balance"] == 5

    code, briefing = run_cli(
        "add-briefing",
        "--user-id", user["id"],
        "--title", "Weekly AI",
        "--frequency", "WEEKLY",
        "--day", "MONDAY",
        "--time", "07:30",
        "--timezone", "Europe/Berlin",
    )
    assert code == 0
    assert briefing["frequency"] == "WEEKLY"
    assert briefing["schedule_day_of_week"] == "MONDAY"
    assert briefing["status"] == "ACTIVE"

    code, source = run_cli(
        "add-source",
        "--briefing-id", briefing["id"],
        "--name", "Inbox",
        "--type", "EMAIL",
    )
    assert code == 0
    assert source["type"] == "EMAIL"


def test_weekly_briefing_requires_a_day(run_cli):
    _, user = run_cli("add-user", "--email", "w@example.com")

    code, _ = run_cli("add-briefing", "--user-id", user["id"], "--title", "x", "--frequency", "WEEKLY")

    assert code == 2


def test_add_source_to_unknown_briefing(run_cli):
    code, _ = run_cli("add-source", "--briefing-id", "missing", "--name", "x", "--url", "https://e.com")

    assert code == 1


def test_execute_briefing_and_run_once(run_cli):
    _, user = run_cli("add-user", "--email", "r@example.com", "--credits", "3")
    _, briefing = run_cli("add-briefing", "--user-id", user["id"], "--title", "Now")

    code, report = run_cli("execute-briefing", briefing["id"])
    assert code == 0
    assert report["status"] == "GENERATED"

    code, results = run_cli("run-once")
    assert code == 0
    assert results["stuck_sources"] == 0

    code, _ = run_cli("execute-briefing", "missing")
    assert code == 1


def test_validate_email_source(run_cli):
    code, result = run_cli("validate-source", "--type", "EMAIL", "--url", "inbox")

    assert code == 0
    assert result["valid"] is True


def test_bad_config_exits_non_zero(tmp_path, monkeypatch, run_cli):
    cfg_path = tmp_path / "bad.yml"
    cfg_path.write_text("jobs:\n  feed_ingestion:\n    worker_count: zero\n", encoding="utf-8")

    code, _ = run_cli("--config", str(cfg_path), "init-db")

    assert code == 1


def test_add_briefing_rejects_malformed_time(run_cli):
    _, user = run_cli("add-user", "--email", "t@example.com")

    code, _ = run_cli("add-briefing", "--user-id", user["id"], "--title", "x", "--time", "8:00")

    assert code == 2
