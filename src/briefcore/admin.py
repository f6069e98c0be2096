from __future__ import annotations

import logging
import os
from contextlib import closing
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import load_config
from .engine import Engine
from .fetchers.base import SourceFetchError
from .storage import get_source, list_source_runs
from .utils import log_event

app = FastAPI(title="briefcore Admin API")


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = Engine(load_config())
        request.app.state.engine = engine
    return engine


def attach_engine(engine: Engine) -> FastAPI:
    app.state.engine = engine
    return app


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("BC_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


class SourceValidationRequest(BaseModel):
    type: str
    url: str


@app.get("/health")
def health(engine: Engine = Depends(get_engine)) -> JSONResponse:
    payload = engine.health()
    status_code = 200 if payload["status"] == "UP" else 503
    return JSONResponse(payload, status_code=status_code)


@app.get("/queues")
def queues(engine: Engine = Depends(get_engine)) -> dict[str, object]:
    return engine.queue_stats()


@app.post("/briefings/{briefing_id}/execute", dependencies=[Depends(_require_admin_token)])
def briefing_execute(briefing_id: str, engine: Engine = Depends(get_engine)) -> dict[str, object]:
    logger = logging.getLogger("briefcore.admin")
    try:
        report = engine.briefing_worker.execute_now(briefing_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="briefing_not_found") from exc
    log_event(
        logger,
        logging.INFO,
        "admin_briefing_executed",
        briefing_id=briefing_id,
        report_id=report.id,
    )
    return asdict(report)


@app.post("/sources/validate", dependencies=[Depends(_require_admin_token)])
def sources_validate(
    payload: SourceValidationRequest, engine: Engine = Depends(get_engine)
) -> dict[str, object]:
    try:
        fetcher = engine.registry.resolve(payload.type.upper())
    except SourceFetchError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return asdict(fetcher.validate(payload.url))


@app.get("/sources/{source_id}/runs")
def source_runs(
    source_id: str, limit: int = 20, engine: Engine = Depends(get_engine)
) -> dict[str, object]:
    with closing(engine.connect()) as conn:
        source = get_source(conn, source_id)
        if source is None:
            raise HTTPException(status_code=404, detail="source_not_found")
        runs = list_source_runs(conn, source_id, limit=limit)
    return {
        "source_id": source_id,
        "status": source.status.value,
        "fetch_status": source.fetch_status.value,
        "last_error": source.last_error,
        "runs": runs,
    }
