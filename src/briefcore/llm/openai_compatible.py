from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.request
from typing import Any

import jsonschema

from ..config import AiConfig
from ..models import EnrichmentResult, ExtractedWebItem, ReportEmailContent
from ..utils import log_event
from .service import AiServiceError

ENRICH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["summary", "tags", "score", "score_reasoning"],
    "properties": {
        "summary": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "score": {"type": "integer", "minimum": 0, "maximum": 100},
        "score_reasoning": {"type": "string"},
    },
}

EXTRACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["items"],
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["title"],
                "properties": {
                    "title": {"type": "string"},
                    "link": {"type": ["string", "null"]},
                    "content": {"type": ["string", "null"]},
                },
            },
        }
    },
}

EMAIL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["subject", "summary"],
    "properties": {
        "subject": {"type": "string"},
        "summary": {"type": "string"},
    },
}

ENRICH_PROMPT = (
    "You summarize and score news articles for a reader. Reply with a JSON object "
    "with keys summary (2-3 sentences), tags (list of short topics), score (0-100 "
    "relevance to the reader's criteria) and score_reasoning (one sentence)."
)

EXTRACT_PROMPT = (
    "You extract news items from the text of a web page. Reply with a JSON object "
    '{"items": [{"title": ..., "link": ..., "content": ...}]}. Use links exactly as '
    "they appear on the page."
)

EMAIL_PROMPT = (
    "You write the email for a news briefing. Reply with a JSON object with keys "
    "subject (under 80 characters) and summary (one short paragraph)."
)


class OpenAICompatibleAiService:
    def __init__(self, config: AiConfig) -> None:
        self._config = config
        self._logger = logging.getLogger("briefcore.llm.openai")

    def enrich_with_score(
        self, title: str, content: str | None, briefing_criteria: str | None
    ) -> EnrichmentResult:
        user = (
            f"Reader criteria: {briefing_criteria or 'general interest'}\n\n"
            f"Title: {title}\n\n{self._clip(content or '')}"
        )
        payload = self._complete(ENRICH_PROMPT, user, ENRICH_SCHEMA)
        return EnrichmentResult(
            summary=payload["summary"],
            tags=[str(tag) for tag in payload["tags"]],
            score=int(payload["score"]),
            score_reasoning=payload["score_reasoning"],
        )

    def extract_from_web(
        self, page_content: str, extraction_prompt: str | None
    ) -> list[ExtractedWebItem]:
        instructions = extraction_prompt or "Extract every news article listed on the page."
        user = f"Instructions: {instructions}\n\nPage:\n{self._clip(page_content)}"
        payload = self._complete(EXTRACT_PROMPT, user, EXTRACT_SCHEMA)
        return [
            ExtractedWebItem(
                title=entry["title"],
                link=entry.get("link"),
                content=entry.get("content"),
            )
            for entry in payload["items"]
        ]

    def generate_report_email_content(
        self, briefing_title: str, briefing_description: str | None, items_text: str
    ) -> ReportEmailContent:
        user = (
            f"Briefing: {briefing_title}\n"
            f"Description: {briefing_description or ''}\n\n"
            f"Items:\n{self._clip(items_text)}"
        )
        payload = self._complete(EMAIL_PROMPT, user, EMAIL_SCHEMA)
        return ReportEmailContent(subject=payload["subject"], summary=payload["summary"])

    def _complete(self, system: str, user: str, schema: dict[str, Any]) -> dict[str, Any]:
        request_payload = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        start = time.monotonic()
        response = _http_request(
            _join_url(self._config.base_url, "/chat/completions"),
            _auth_headers(os.environ.get(self._config.api_key_env)),
            request_payload,
            self._config.timeout_seconds,
        )
        text = _read_openai(response)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise AiServiceError(f"invalid_json: {exc}") from exc
        try:
            jsonschema.validate(parsed, schema)
        except jsonschema.ValidationError as exc:
            raise AiServiceError(f"schema_validation_failed: {exc.message}") from exc
        log_event(
            self._logger,
            logging.DEBUG,
            "ai_call_completed",
            model=self._config.model,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        return parsed

    def _clip(self, text: str) -> str:
        return text[: self._config.max_input_chars]


def _http_request(
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(url, data=data, method="POST")
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise AiServiceError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise AiServiceError(f"network_error: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AiServiceError(f"invalid_response: {raw[:200]}") from exc


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise AiServiceError("openai_missing_choices")
    return choices[0]["message"]["content"] or ""


def _auth_headers(api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    return {"Authorization": f"Bearer {api_key}"}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
