from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SourceType(str, Enum):
    RSS = "RSS"
    WEB = "WEB"
    REDDIT = "REDDIT"
    EMAIL = "EMAIL"


class SourceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    DELETED = "DELETED"


class FetchStatus(str, Enum):
    IDLE = "IDLE"
    QUEUED = "QUEUED"
    FETCHING = "FETCHING"


class BriefingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    ERROR = "ERROR"
    DELETED = "DELETED"


class BriefingFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class ItemStatus(str, Enum):
    NEW = "NEW"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    ERROR = "ERROR"


REPORT_STATUS_GENERATED = "GENERATED"

DAYS_OF_WEEK = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    credits_balance: int


@dataclass(frozen=True)
class Source:
    id: str
    briefing_id: str
    name: str
    url: str | None
    type: SourceType
    status: SourceStatus
    fetch_status: FetchStatus
    refresh_interval_minutes: int | None
    last_fetched_at: str | None
    queued_at: str | None
    fetch_started_at: str | None
    last_error: str | None
    extraction_prompt: str | None = None


@dataclass(frozen=True)
class Briefing:
    id: str
    user_id: str
    title: str
    description: str | None
    briefing_criteria: str | None
    frequency: BriefingFrequency
    schedule_day_of_week: str | None
    schedule_time: str
    timezone: str
    status: BriefingStatus
    email_delivery_enabled: bool
    last_executed_at: str | None
    queued_at: str | None
    processing_started_at: str | None
    error_message: str | None


@dataclass(frozen=True)
class NewsItem:
    id: str
    source_id: str
    guid: str
    title: str
    link: str | None
    author: str | None
    published_at: str
    raw_content: str | None
    clean_content: str | None
    summary: str | None
    tags: list[str]
    score: int | None
    score_reasoning: str | None
    status: ItemStatus
    error_message: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ReportItem:
    id: str
    report_id: str
    news_item_id: str
    score: int
    position: int
    title: str | None = None
    link: str | None = None


@dataclass(frozen=True)
class Report:
    id: str
    briefing_id: str
    status: str
    generated_at: str
    items: list[ReportItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass(frozen=True)
class FetchedItem:
    guid: str
    title: str
    link: str | None
    author: str | None
    published_at: str
    raw_content: str | None
    clean_content: str | None


@dataclass(frozen=True)
class SourceValidationResult:
    valid: bool
    title: str | None = None
    description: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, title: str | None, description: str | None = None) -> "SourceValidationResult":
        return cls(valid=True, title=title, description=description)

    @classmethod
    def failure(cls, error: str) -> "SourceValidationResult":
        return cls(valid=False, error=error)


@dataclass(frozen=True)
class EnrichmentResult:
    summary: str
    tags: list[str]
    score: int
    score_reasoning: str


@dataclass(frozen=True)
class ExtractedWebItem:
    title: str
    link: str | None
    content: str | None


@dataclass(frozen=True)
class ReportEmailContent:
    subject: str
    summary: str
