from __future__ import annotations

import json
import logging
import re
from datetime import timedelta
from typing import Any
from urllib.parse import urlparse

from ..config import HttpConfig
from ..models import FetchedItem, Source, SourceType, SourceValidationResult
from ..utils import isoformat_utc, log_event, utc_now
from .base import SourceFetchError, SourceFetcher, fetch_bytes, parse_date_value

REDDIT_BASE_URL = "https://www.reddit.com"
SUBREDDIT_PATTERN = re.compile(r"^[A-Za-z0-9_]{2,21}$")
MAX_AGE_HOURS = 48
DEFAULT_LIMIT = 50

# Links to reddit-hosted media carry no article to summarize.
REDDIT_MEDIA_DOMAINS = {
    "i.redd.it",
    "v.redd.it",
    "reddit.com",
    "www.reddit.com",
    "old.reddit.com",
    "new.reddit.com",
    "preview.redd.it",
    "i.imgur.com",
    "imgur.com",
}


def extract_subreddit(locator: str | None) -> str | None:
    if not locator or not locator.strip():
        return None
    value = locator.strip()
    if value.startswith("reddit://"):
        return value[len("reddit://") :].strip("/") or None
    if value.startswith("http://") or value.startswith("https://"):
        parts = [part for part in urlparse(value).path.split("/") if part]
        if len(parts) >= 2 and parts[0].lower() == "r":
            return parts[1]
        return None
    if value.lower().startswith("r/"):
        value = value[2:]
    return value.strip("/") or None


class RedditFetcher(SourceFetcher):
    source_type = SourceType.REDDIT

    def __init__(self, http: HttpConfig, base_url: str = REDDIT_BASE_URL) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._logger = logging.getLogger("briefcore.fetchers.reddit")

    def validate(self, locator: str) -> SourceValidationResult:
        subreddit = extract_subreddit(locator)
        if subreddit is None:
            return SourceValidationResult.failure(
                "Invalid subreddit format. Use r/<name>, <name> or a subreddit URL"
            )
        if not SUBREDDIT_PATTERN.match(subreddit):
            return SourceValidationResult.failure(
                "Invalid subreddit name: must be 2-21 characters, alphanumeric and underscores only"
            )
        try:
            self._listing(subreddit, limit=1)
        except SourceFetchError:
            return SourceValidationResult.failure(f"Subreddit not found or inaccessible: {subreddit}")
        return SourceValidationResult.success(f"r/{subreddit}", f"Reddit subreddit: {subreddit}")

    def fetch(self, source: Source, since: str | None) -> list[FetchedItem]:
        subreddit = extract_subreddit(source.url)
        if subreddit is None:
            raise SourceFetchError(f"Invalid subreddit URL: {source.url}")
        listing = self._listing(subreddit, limit=DEFAULT_LIMIT)
        cutoff = _cutoff(since)
        items: list[FetchedItem] = []
        for child in (listing.get("data") or {}).get("children") or []:
            post = child.get("data") or {}
            if post.get("is_self") or post.get("stickied") or post.get("over_18"):
                continue
            if str(post.get("domain") or "").lower() in REDDIT_MEDIA_DOMAINS:
                continue
            published_at = parse_date_value(post.get("created_utc"))
            if published_at is None or published_at < cutoff:
                continue
            items.append(
                FetchedItem(
                    guid=f"reddit:{post.get('name')}",
                    title=post.get("title") or "(untitled)",
                    link=post.get("url"),
                    author=f"u/{post.get('author')}",
                    published_at=published_at,
                    raw_content=_raw_content(post),
                    clean_content=_clean_content(post),
                )
            )
        log_event(
            self._logger,
            logging.INFO,
            "reddit_fetched",
            source_id=source.id,
            subreddit=subreddit,
            item_count=len(items),
        )
        return items

    def _listing(self, subreddit: str, limit: int) -> dict[str, Any]:
        url = f"{self._base_url}/r/{subreddit}/new.json?limit={limit}"
        content = fetch_bytes(url, self._http, self._logger, subreddit=subreddit)
        try:
            payload = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SourceFetchError(f"Invalid Reddit response for r/{subreddit}: {exc}") from exc
        if not isinstance(payload, dict):
            raise SourceFetchError(f"Unexpected Reddit response for r/{subreddit}")
        return payload


def _cutoff(since: str | None) -> str:
    max_age = isoformat_utc(utc_now() - timedelta(hours=MAX_AGE_HOURS))
    if since is None:
        return max_age
    return max(since, max_age)


def _raw_content(post: dict[str, Any]) -> str:
    return (
        f"Posted to r/{post.get('subreddit')} by u/{post.get('author')}\n"
        f"Score: {post.get('score', 0)} | Comments: {post.get('num_comments', 0)}\n"
        f"Link: {post.get('url')}"
    )


def _clean_content(post: dict[str, Any]) -> str:
    return (
        f"r/{post.get('subreddit')} - {post.get('score', 0)} points, "
        f"{post.get('num_comments', 0)} comments\n\n{post.get('title')} ({post.get('url')})"
    )
