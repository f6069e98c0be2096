from __future__ import annotations

from typing import Iterable

from ..config import Config
from ..models import SourceType
from .base import SourceFetchError, SourceFetcher
from .inbox import EmailSourceFetcher
from .reddit import RedditFetcher
from .rss import RssFetcher
from .web import WebFetcher


class FetcherRegistry:
    def __init__(self, fetchers: Iterable[SourceFetcher]) -> None:
        self._fetchers: dict[SourceType, SourceFetcher] = {}
        for fetcher in fetchers:
            if fetcher.source_type in self._fetchers:
                raise ValueError(f"duplicate fetcher for {fetcher.source_type.value}")
            self._fetchers[fetcher.source_type] = fetcher

    def resolve(self, source_type: SourceType | str) -> SourceFetcher:
        try:
            return self._fetchers[SourceType(source_type)]
        except (KeyError, ValueError) as exc:
            raise SourceFetchError(f"No fetcher available for source type: {source_type}") from exc


def build_fetcher_registry(config: Config, ai_service) -> FetcherRegistry:
    http = config.fetch.http
    return FetcherRegistry(
        [
            RssFetcher(http),
            WebFetcher(http, ai_service, config.fetch.max_content_chars),
            RedditFetcher(http),
            EmailSourceFetcher(),
        ]
    )
