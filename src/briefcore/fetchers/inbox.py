from __future__ import annotations

from ..models import FetchedItem, Source, SourceType, SourceValidationResult
from .base import SourceFetcher


class EmailSourceFetcher(SourceFetcher):
    """Inbound email is pushed by the mail gateway, never polled."""

    source_type = SourceType.EMAIL

    def validate(self, locator: str) -> SourceValidationResult:
        return SourceValidationResult.success("Email Newsletter", "Receives newsletters via email")

    def fetch(self, source: Source, since: str | None) -> list[FetchedItem]:
        return []
