from __future__ import annotations

import calendar
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from bs4 import BeautifulSoup

from ..config import HttpConfig
from ..models import FetchedItem, Source, SourceType, SourceValidationResult
from ..utils import isoformat_utc, log_event


class SourceFetchError(RuntimeError):
    pass


class SourceFetcher(ABC):
    source_type: SourceType

    @abstractmethod
    def validate(self, locator: str) -> SourceValidationResult:
        raise NotImplementedError

    @abstractmethod
    def fetch(self, source: Source, since: str | None) -> list[FetchedItem]:
        raise NotImplementedError


_BOILERPLATE_TAGS = ("script", "style", "nav", "footer", "header", "aside")


def fetch_url(
    url: str,
    http: HttpConfig,
    headers: dict[str, str] | None = None,
) -> tuple[int | None, bytes | None, str | None]:
    """GET ``url``; returns ``(status, body, error)`` and never raises.

    Connection failures are retried ``http.max_retries`` times with linear
    backoff. HTTP error statuses are final.
    """
    request = Request(url, headers={"User-Agent": http.user_agent, **(headers or {})})
    last_error = "Unknown fetch error"
    for attempt in range(http.max_retries + 1):
        if attempt:
            time.sleep(http.backoff_seconds * attempt)
        try:
            with urlopen(request, timeout=http.timeout_seconds) as response:
                return response.getcode(), response.read(), None
        except HTTPError as exc:
            return exc.code, None, f"HTTP error: {exc.code}"
        except URLError as exc:
            last_error = str(exc.reason)
        except Exception as exc:  # noqa: BLE001
            return None, None, str(exc)
    return None, None, last_error


def fetch_bytes(url: str, http: HttpConfig, logger: logging.Logger, **fields: Any) -> bytes:
    status, content, error = fetch_url(url, http)
    if content and not error:
        return content
    reason = error or "empty response"
    log_event(logger, logging.WARNING, "source_http_failed", url=url, http_status=status, error=reason, **fields)
    raise SourceFetchError(reason)


def extract_readable_text(html: str) -> str:
    """Main text of a page: the <article> if present, else the longest <div>."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(_BOILERPLATE_TAGS)):
        tag.decompose()
    article = soup.find("article")
    if article is not None:
        return _normalize_text(article.get_text(" ", strip=True))
    candidates = [div.get_text(" ", strip=True) for div in soup.find_all("div")]
    longest = max(candidates, key=len, default="")
    return _normalize_text(longest or soup.get_text(" ", strip=True))


def extract_title(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


def html_to_text(value: str | None) -> str | None:
    if not value:
        return value
    return _normalize_text(BeautifulSoup(value, "html.parser").get_text(" ", strip=True))


def parse_date_value(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "tm_year"):
        return isoformat_utc(datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc))
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, (int, float)):
        return isoformat_utc(datetime.fromtimestamp(float(value), tz=timezone.utc))
    if isinstance(value, str):
        try:
            return isoformat_utc(parsedate_to_datetime(value))
        except (TypeError, ValueError):
            try:
                return isoformat_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
            except ValueError:
                return None
    return None


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
