from __future__ import annotations

import logging
from urllib.parse import urldefrag, urljoin

from ..config import HttpConfig
from ..models import FetchedItem, Source, SourceType, SourceValidationResult
from ..utils import log_event, utc_now_iso
from .base import (
    SourceFetchError,
    SourceFetcher,
    extract_readable_text,
    extract_title,
    fetch_bytes,
)


class WebFetcher(SourceFetcher):
    """Scrapes a page and lets the AI service pick the items out of it."""

    source_type = SourceType.WEB

    def __init__(self, http: HttpConfig, ai_service, max_content_chars: int = 50000) -> None:
        self._http = http
        self._ai = ai_service
        self._max_content_chars = max_content_chars
        self._logger = logging.getLogger("briefcore.fetchers.web")

    def validate(self, locator: str) -> SourceValidationResult:
        try:
            html = self._html(locator)
        except SourceFetchError as exc:
            return SourceValidationResult.failure(f"Failed to fetch URL: {exc}")
        return SourceValidationResult.success(extract_title(html) or "Web Page", "Web page source")

    def fetch(self, source: Source, since: str | None) -> list[FetchedItem]:
        if not source.url:
            raise SourceFetchError("WEB source has no URL")
        text = extract_readable_text(self._html(source.url))
        if len(text) > self._max_content_chars:
            log_event(
                self._logger,
                logging.INFO,
                "web_content_truncated",
                source_id=source.id,
                length=len(text),
                max_length=self._max_content_chars,
            )
            text = text[: self._max_content_chars]
        try:
            extracted = self._ai.extract_from_web(text, source.extraction_prompt)
        except Exception as exc:  # noqa: BLE001
            raise SourceFetchError(f"AI extraction failed: {exc}") from exc
        published_at = utc_now_iso()
        items: list[FetchedItem] = []
        for entry in extracted:
            if not entry.link:
                log_event(self._logger, logging.DEBUG, "web_item_without_link", title=entry.title)
                continue
            link = urljoin(source.url, entry.link)
            items.append(
                FetchedItem(
                    guid=normalize_link(link),
                    title=entry.title,
                    link=link,
                    author=None,
                    published_at=published_at,
                    raw_content=None,
                    clean_content=entry.content,
                )
            )
        log_event(
            self._logger,
            logging.INFO,
            "web_extracted",
            source_id=source.id,
            item_count=len(items),
        )
        return items

    def _html(self, url: str) -> str:
        return fetch_bytes(url, self._http, self._logger).decode("utf-8", errors="replace")


def normalize_link(link: str) -> str:
    without_fragment, _ = urldefrag(link)
    return without_fragment.rstrip("/")
