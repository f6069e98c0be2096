from conftest import StaticFetcher, fetched
from fastapi.testclient import TestClient

from briefcore.admin import app, attach_engine
from briefcore.config import build_config
from briefcore.engine import Engine
from briefcore.fetchers.inbox import EmailSourceFetcher
from briefcore.fetchers.registry import FetcherRegistry
from briefcore.services.email_delivery import LogEmailSender


def _client(config):
    registry = FetcherRegistry([StaticFetcher(items=[fetched("a")]), EmailSourceFetcher()])
    engine = Engine(config, registry=registry, email_sender=LogEmailSender())
    attach_engine(engine)
    return TestClient(app), engine


def test_health_and_queue_stats(config):
    client, _ = _client(config)

    health = client.get("/health")
    queues = client.get("/queues")

    assert health.status_code == 200
    assert health.json()["status"] == "UP"
    assert queues.status_code == 200
    assert queues.json()["fetch"]["queue_capacity"] == 1000


def test_health_is_503_when_a_queue_is_nearly_full(raw_config):
    raw_config["jobs"]["briefing_execution"]["queue_capacity"] = 1
    client, engine = _client(build_config(raw_config))
    engine.briefing_queue.enqueue("pending")

    response = client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "DOWN"
    assert body["components"]["briefing_execution"]["status"] == "DOWN"


def test_execute_briefing(config, briefing_id):
    client, _ = _client(config)

    response = client.post(f"/briefings/{briefing_id}/execute")

    assert response.status_code == 200
    body = response.json()
    assert body["briefing_id"] == briefing_id
    assert body["status"] == "GENERATED"
    assert body["items"] == []


def test_execute_unknown_briefing(config):
    client, _ = _client(config)

    assert client.post("/briefings/missing/execute").status_code == 404


def test_validate_source(config):
    client, _ = _client(config)

    ok = client.post("/sources/validate", json={"type": "email", "url": "inbox"})
    unknown = client.post("/sources/validate", json={"type": "fax", "url": "555-0100"})

    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert unknown.status_code == 400


def test_source_runs(config, source_id):
    client, engine = _client(config)
    engine.run_jobs_once()

    response = client.get(f"/sources/{source_id}/runs")

    assert response.status_code == 200
    body = response.json()
    assert body["fetch_status"] == "IDLE"
    assert len(body["runs"]) == 1
    assert body["runs"][0]["items_created"] == 1
    assert client.get("/sources/missing/runs").status_code == 404


def test_admin_token_guards_mutations(config, briefing_id, monkeypatch):
    monkeypatch.setenv("BC_ADMIN_TOKEN", "s3cret")
    client, _ = _client(config)

    denied = client.post(f"/briefings/{briefing_id}/execute")
    allowed = client.post(
        f"/briefings/{briefing_id}/execute", headers={"X-Admin-Token": "s3cret"}
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200
