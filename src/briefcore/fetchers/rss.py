from __future__ import annotations

import logging
from typing import Any

import feedparser

from ..config import HttpConfig
from ..models import FetchedItem, Source, SourceType, SourceValidationResult
from ..utils import log_event, stable_hash, utc_now_iso
from .base import (
    SourceFetchError,
    SourceFetcher,
    fetch_bytes,
    html_to_text,
    parse_date_value,
)


class RssFetcher(SourceFetcher):
    source_type = SourceType.RSS

    def __init__(self, http: HttpConfig) -> None:
        self._http = http
        self._logger = logging.getLogger("briefcore.fetchers.rss")

    def validate(self, locator: str) -> SourceValidationResult:
        try:
            parsed = self._load(locator)
        except SourceFetchError as exc:
            return SourceValidationResult.failure(f"Invalid RSS feed: {exc}")
        feed = parsed.feed or {}
        return SourceValidationResult.success(feed.get("title"), feed.get("subtitle"))

    def fetch(self, source: Source, since: str | None) -> list[FetchedItem]:
        if not source.url:
            raise SourceFetchError("RSS source has no URL")
        parsed = self._load(source.url)
        items: list[FetchedItem] = []
        for entry in parsed.entries or []:
            published_at = _entry_published_at(entry)
            if since and published_at < since:
                continue
            raw_content = _entry_content(entry)
            items.append(
                FetchedItem(
                    guid=_entry_guid(entry),
                    title=entry.get("title") or "(untitled)",
                    link=entry.get("link"),
                    author=entry.get("author"),
                    published_at=published_at,
                    raw_content=raw_content,
                    clean_content=html_to_text(raw_content),
                )
            )
        log_event(
            self._logger,
            logging.INFO,
            "rss_fetched",
            source_id=source.id,
            found_count=len(parsed.entries or []),
            item_count=len(items),
        )
        return items

    def _load(self, url: str) -> Any:
        content = fetch_bytes(url, self._http, self._logger)
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise SourceFetchError(f"Failed to parse feed: {parsed.bozo_exception}")
        if parsed.bozo:
            log_event(
                self._logger,
                logging.WARNING,
                "feed_parse_warning",
                url=url,
                error=str(parsed.bozo_exception),
            )
        return parsed


def _entry_guid(entry: Any) -> str:
    guid = entry.get("id") or entry.get("link")
    if guid:
        return str(guid)
    return stable_hash(entry.get("title"), entry.get("published"))


def _entry_published_at(entry: Any) -> str:
    for key in ("published_parsed", "published", "updated_parsed", "updated"):
        parsed = parse_date_value(entry.get(key))
        if parsed:
            return parsed
    return utc_now_iso()


def _entry_content(entry: Any) -> str:
    contents = entry.get("content") or []
    if contents:
        return contents[0].get("value") or ""
    return entry.get("summary") or entry.get("description") or ""
