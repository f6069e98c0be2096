from __future__ import annotations

import hashlib
import logging
from typing import Protocol

from ..config import AiConfig
from ..models import EnrichmentResult, ExtractedWebItem, ReportEmailContent


class AiServiceError(ValueError):
    pass


class AiService(Protocol):
    def enrich_with_score(
        self, title: str, content: str | None, briefing_criteria: str | None
    ) -> EnrichmentResult: ...

    def extract_from_web(
        self, page_content: str, extraction_prompt: str | None
    ) -> list[ExtractedWebItem]: ...

    def generate_report_email_content(
        self, briefing_title: str, briefing_description: str | None, items_text: str
    ) -> ReportEmailContent: ...


class MockAiService:
    """Deterministic provider for tests and local runs; never calls the network."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("briefcore.llm.mock")

    def enrich_with_score(
        self, title: str, content: str | None, briefing_criteria: str | None
    ) -> EnrichmentResult:
        self._logger.debug("mock_enrich title=%s", title)
        return EnrichmentResult(
            summary=(
                f"This is a mock summary for: {title}. "
                "The article discusses relevant topics."
            ),
            tags=["Technology", "News"],
            score=mock_score(title),
            score_reasoning="Mock relevance score based on content analysis against briefing criteria.",
        )

    def extract_from_web(
        self, page_content: str, extraction_prompt: str | None
    ) -> list[ExtractedWebItem]:
        self._logger.debug("mock_extract_from_web prompt=%s", extraction_prompt)
        return [
            ExtractedWebItem(
                title="Mock Web Item 1",
                link="https://example.com/article/1",
                content="This is a mock extraction from the web page.",
            ),
            ExtractedWebItem(
                title="Mock Web Item 2",
                link="/article/2",
                content="Another mock item extracted from the web page.",
            ),
        ]

    def generate_report_email_content(
        self, briefing_title: str, briefing_description: str | None, items_text: str
    ) -> ReportEmailContent:
        return ReportEmailContent(
            subject=f"{briefing_title}: key developments",
            summary="Your briefing highlights the top stories from your configured sources.",
        )


def mock_score(title: str) -> int:
    digest = hashlib.sha256(title.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") % 101


def build_ai_service(config: AiConfig):
    if config.provider == "mock":
        return MockAiService()
    if config.provider == "openai_compatible":
        from .openai_compatible import OpenAICompatibleAiService

        return OpenAICompatibleAiService(config)
    raise AiServiceError(f"unsupported_provider_type: {config.provider}")
