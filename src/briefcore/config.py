from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class FeedIngestionConfig:
    queue_capacity: int
    worker_count: int
    batch_size: int
    stuck_threshold_minutes: int
    min_refresh_interval_minutes: int
    default_refresh_interval_minutes: int
    retry_error_sources: bool


@dataclass(frozen=True)
class IntervalConfig:
    enabled: bool
    interval_seconds: int


@dataclass(frozen=True)
class NewsProcessingConfig:
    enabled: bool
    queue_capacity: int
    worker_count: int
    batch_size: int
    interval_seconds: int
    stuck_threshold_minutes: int
    recovery_interval_seconds: int
    credits_per_item: int


@dataclass(frozen=True)
class BriefingExecutionConfig:
    enabled: bool
    queue_capacity: int
    worker_count: int
    interval_seconds: int
    stuck_threshold_minutes: int
    recovery_interval_seconds: int
    max_report_items: int
    daily_lookback_days: int
    weekly_lookback_days: int


@dataclass(frozen=True)
class WorkersConfig:
    poll_timeout_seconds: float
    shutdown_grace_seconds: float


@dataclass(frozen=True)
class JobsConfig:
    feed_ingestion: FeedIngestionConfig
    feed_scheduling: IntervalConfig
    feed_recovery: IntervalConfig
    news_processing: NewsProcessingConfig
    briefing_execution: BriefingExecutionConfig
    workers: WorkersConfig


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str
    max_retries: int
    backoff_seconds: float


@dataclass(frozen=True)
class FetchConfig:
    http: HttpConfig
    max_content_chars: int


@dataclass(frozen=True)
class AiConfig:
    provider: str
    base_url: str
    model: str
    api_key_env: str
    timeout_seconds: int
    max_input_chars: int


@dataclass(frozen=True)
class EmailConfig:
    sender: str
    from_address: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password_env: str
    smtp_use_tls: bool


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    jobs: JobsConfig
    fetch: FetchConfig
    ai: AiConfig
    email: EmailConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "briefcore",
        "timezone": "UTC",
    },
    "paths": {
        "data_dir": "./data",
        "state_db": "./data/state.sqlite3",
    },
    "jobs": {
        "feed_ingestion": {
            "queue_capacity": 1000,
            "worker_count": 4,
            "batch_size": 100,
            "stuck_threshold_minutes": 10,
            "min_refresh_interval_minutes": 1,
            "default_refresh_interval_minutes": 15,
            "retry_error_sources": False,
        },
        "feed_scheduling": {
            "enabled": True,
            "interval_seconds": 60,
        },
        "feed_recovery": {
            "enabled": True,
            "interval_seconds": 300,
        },
        "news_processing": {
            "enabled": True,
            "queue_capacity": 500,
            "worker_count": 2,
            "batch_size": 50,
            "interval_seconds": 60,
            "stuck_threshold_minutes": 10,
            "recovery_interval_seconds": 300,
            "credits_per_item": 1,
        },
        "briefing_execution": {
            "enabled": True,
            "queue_capacity": 100,
            "worker_count": 1,
            "interval_seconds": 60,
            "stuck_threshold_minutes": 15,
            "recovery_interval_seconds": 300,
            "max_report_items": 10,
            "daily_lookback_days": 1,
            "weekly_lookback_days": 7,
        },
        "workers": {
            "poll_timeout_seconds": 1.0,
            "shutdown_grace_seconds": 30.0,
        },
    },
    "fetch": {
        "http": {
            "timeout_seconds": 20,
            "user_agent": "briefcore/0.1",
            "max_retries": 2,
            "backoff_seconds": 2.0,
        },
        "max_content_chars": 50000,
    },
    "ai": {
        "provider": "mock",
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "api_key_env": "BC_AI_API_KEY",
        "timeout_seconds": 60,
        "max_input_chars": 12000,
    },
    "email": {
        "sender": "logs",
        "from_address": "briefings@localhost",
        "smtp_host": "localhost",
        "smtp_port": 25,
        "smtp_username": "",
        "smtp_password_env": "BC_SMTP_PASSWORD",
        "smtp_use_tls": False,
    },
}

AI_PROVIDERS = {"mock", "openai_compatible"}
EMAIL_SENDERS = {"logs", "smtp"}


def get_config_path(path: str | None = None) -> str | None:
    if path:
        return path
    env_path = os.environ.get("BC_CONFIG_PATH", "").strip()
    return env_path or None


def load_config(path: str | None = None) -> Config:
    cfg = _deep_copy(DEFAULT_CONFIG)
    config_path = get_config_path(path)
    if config_path:
        if not os.path.exists(config_path):
            raise ConfigError(f"config file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as handle:
            try:
                loaded = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError("config root must be a mapping")
            cfg = _deep_merge(cfg, loaded)
    data_dir = os.environ.get("BC_DATA_DIR", "").strip()
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
        cfg["paths"]["state_db"] = os.path.join(data_dir, "state.sqlite3")
    return build_config(cfg)


def build_config(cfg: dict[str, Any]) -> Config:
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    jobs = cfg["jobs"]
    for section in ("feed_ingestion", "news_processing", "briefing_execution"):
        for key in ("queue_capacity", "worker_count"):
            if jobs[section][key] < 1:
                errors.append(f"config.jobs.{section}.{key} must be >= 1")
    for section in ("feed_scheduling", "feed_recovery"):
        if jobs[section]["interval_seconds"] < 1:
            errors.append(f"config.jobs.{section}.interval_seconds must be >= 1")
    for section in ("feed_ingestion", "news_processing"):
        if jobs[section]["batch_size"] < 1:
            errors.append(f"config.jobs.{section}.batch_size must be >= 1")
    if jobs["briefing_execution"]["max_report_items"] < 1:
        errors.append("config.jobs.briefing_execution.max_report_items must be >= 1")
    if jobs["workers"]["poll_timeout_seconds"] <= 0:
        errors.append("config.jobs.workers.poll_timeout_seconds must be > 0")
    if cfg["ai"]["provider"] not in AI_PROVIDERS:
        errors.append(f"config.ai.provider must be one of {sorted(AI_PROVIDERS)}")
    if cfg["email"]["sender"] not in EMAIL_SENDERS:
        errors.append(f"config.email.sender must be one of {sorted(EMAIL_SENDERS)}")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    jobs_cfg = cfg["jobs"]
    feed_cfg = jobs_cfg["feed_ingestion"]
    processing_cfg = jobs_cfg["news_processing"]
    briefing_cfg = jobs_cfg["briefing_execution"]
    workers_cfg = jobs_cfg["workers"]

    jobs = JobsConfig(
        feed_ingestion=FeedIngestionConfig(
            queue_capacity=int(feed_cfg["queue_capacity"]),
            worker_count=int(feed_cfg["worker_count"]),
            batch_size=int(feed_cfg["batch_size"]),
            stuck_threshold_minutes=int(feed_cfg["stuck_threshold_minutes"]),
            min_refresh_interval_minutes=int(feed_cfg["min_refresh_interval_minutes"]),
            default_refresh_interval_minutes=int(feed_cfg["default_refresh_interval_minutes"]),
            retry_error_sources=bool(feed_cfg["retry_error_sources"]),
        ),
        feed_scheduling=_build_interval(jobs_cfg["feed_scheduling"]),
        feed_recovery=_build_interval(jobs_cfg["feed_recovery"]),
        news_processing=NewsProcessingConfig(
            enabled=bool(processing_cfg["enabled"]),
            queue_capacity=int(processing_cfg["queue_capacity"]),
            worker_count=int(processing_cfg["worker_count"]),
            batch_size=int(processing_cfg["batch_size"]),
            interval_seconds=int(processing_cfg["interval_seconds"]),
            stuck_threshold_minutes=int(processing_cfg["stuck_threshold_minutes"]),
            recovery_interval_seconds=int(processing_cfg["recovery_interval_seconds"]),
            credits_per_item=int(processing_cfg["credits_per_item"]),
        ),
        briefing_execution=BriefingExecutionConfig(
            enabled=bool(briefing_cfg["enabled"]),
            queue_capacity=int(briefing_cfg["queue_capacity"]),
            worker_count=int(briefing_cfg["worker_count"]),
            interval_seconds=int(briefing_cfg["interval_seconds"]),
            stuck_threshold_minutes=int(briefing_cfg["stuck_threshold_minutes"]),
            recovery_interval_seconds=int(briefing_cfg["recovery_interval_seconds"]),
            max_report_items=int(briefing_cfg["max_report_items"]),
            daily_lookback_days=int(briefing_cfg["daily_lookback_days"]),
            weekly_lookback_days=int(briefing_cfg["weekly_lookback_days"]),
        ),
        workers=WorkersConfig(
            poll_timeout_seconds=float(workers_cfg["poll_timeout_seconds"]),
            shutdown_grace_seconds=float(workers_cfg["shutdown_grace_seconds"]),
        ),
    )

    http_cfg = cfg["fetch"]["http"]
    fetch = FetchConfig(
        http=HttpConfig(
            timeout_seconds=int(http_cfg["timeout_seconds"]),
            user_agent=str(http_cfg["user_agent"]),
            max_retries=int(http_cfg["max_retries"]),
            backoff_seconds=float(http_cfg["backoff_seconds"]),
        ),
        max_content_chars=int(cfg["fetch"]["max_content_chars"]),
    )

    ai_cfg = cfg["ai"]
    email_cfg = cfg["email"]
    return Config(
        app=AppConfig(name=str(cfg["app"]["name"]), timezone=str(cfg["app"]["timezone"])),
        paths=PathsConfig(
            data_dir=str(cfg["paths"]["data_dir"]),
            state_db=str(cfg["paths"]["state_db"]),
        ),
        jobs=jobs,
        fetch=fetch,
        ai=AiConfig(
            provider=str(ai_cfg["provider"]),
            base_url=str(ai_cfg["base_url"]),
            model=str(ai_cfg["model"]),
            api_key_env=str(ai_cfg["api_key_env"]),
            timeout_seconds=int(ai_cfg["timeout_seconds"]),
            max_input_chars=int(ai_cfg["max_input_chars"]),
        ),
        email=EmailConfig(
            sender=str(email_cfg["sender"]),
            from_address=str(email_cfg["from_address"]),
            smtp_host=str(email_cfg["smtp_host"]),
            smtp_port=int(email_cfg["smtp_port"]),
            smtp_username=str(email_cfg["smtp_username"]),
            smtp_password_env=str(email_cfg["smtp_password_env"]),
            smtp_use_tls=bool(email_cfg["smtp_use_tls"]),
        ),
    )


def _build_interval(section: dict[str, Any]) -> IntervalConfig:
    return IntervalConfig(
        enabled=bool(section["enabled"]),
        interval_seconds=int(section["interval_seconds"]),
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
