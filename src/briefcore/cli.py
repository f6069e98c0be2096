from __future__ import annotations

import argparse
import logging
from contextlib import closing
from dataclasses import asdict

from .config import ConfigError, load_config
from .engine import Engine
from .fetchers.base import SourceFetchError
from .models import DAYS_OF_WEEK, BriefingFrequency, SourceType
from .storage import create_briefing, create_source, create_user, get_briefing, init_db
from .utils import configure_logging, json_dumps, log_event


def _print(value) -> None:
    print(json_dumps(value))


def _load_engine(args: argparse.Namespace) -> Engine:
    return Engine(load_config(args.config))


def _cmd_init_db(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    conn = init_db(config.paths.state_db)
    conn.close()
    log_event(logger, logging.INFO, "db_initialized", path=config.paths.state_db)
    return 0


def _cmd_add_user(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    with closing(init_db(config.paths.state_db)) as conn:
        user_id = create_user(conn, args.email, credits=args.credits)
    log_event(logger, logging.INFO, "user_created", user_id=user_id)
    _print({"id": user_id, "email": args.email, "credits_balance": args.credits})
    return 0


def _cmd_add_briefing(args: argparse.Namespace, logger: logging.Logger) -> int:
    if args.frequency == BriefingFrequency.WEEKLY.value and not args.day:
        logger.error("--day is required for WEEKLY briefings")
        return 2
    config = load_config(args.config)
    with closing(init_db(config.paths.state_db)) as conn:
        try:
            briefing_id = create_briefing(
                conn,
                args.user_id,
                args.title,
                frequency=args.frequency,
                schedule_time=args.time,
                schedule_day_of_week=args.day,
                timezone=args.timezone,
                briefing_criteria=args.criteria,
                email_delivery_enabled=args.email,
            )
        except ValueError as exc:
            logger.error("%s", exc)
            return 2
        briefing = get_briefing(conn, briefing_id)
    log_event(logger, logging.INFO, "briefing_created", briefing_id=briefing_id)
    _print(asdict(briefing))
    return 0


def _cmd_add_source(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    with closing(init_db(config.paths.state_db)) as conn:
        if get_briefing(conn, args.briefing_id) is None:
            logger.error("Briefing not found: %s", args.briefing_id)
            return 1
        source_id = create_source(
            conn,
            args.briefing_id,
            args.name,
            args.url,
            args.type,
            refresh_interval_minutes=args.refresh,
            extraction_prompt=args.prompt,
        )
    log_event(logger, logging.INFO, "source_created", source_id=source_id, type=args.type)
    _print({"id": source_id, "briefing_id": args.briefing_id, "type": args.type})
    return 0


def _cmd_validate_source(args: argparse.Namespace, logger: logging.Logger) -> int:
    engine = _load_engine(args)
    try:
        fetcher = engine.registry.resolve(args.type)
    except SourceFetchError as exc:
        logger.error("%s", exc)
        return 2
    result = fetcher.validate(args.url)
    _print(asdict(result))
    return 0 if result.valid else 1


def _cmd_execute_briefing(args: argparse.Namespace, logger: logging.Logger) -> int:
    engine = _load_engine(args)
    try:
        report = engine.briefing_worker.execute_now(args.briefing_id)
    except LookupError:
        logger.error("Briefing not found: %s", args.briefing_id)
        return 1
    _print(asdict(report))
    return 0


def _cmd_run_once(args: argparse.Namespace, logger: logging.Logger) -> int:
    engine = _load_engine(args)
    _print(engine.run_jobs_once())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="briefcore")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database and apply migrations")
    init_parser.set_defaults(func=_cmd_init_db)

    user_parser = subparsers.add_parser("add-user", help="Create a user with a credit balance")
    user_parser.add_argument("--email", required=True)
    user_parser.add_argument("--credits", type=int, default=0)
    user_parser.set_defaults(func=_cmd_add_user)

    briefing_parser = subparsers.add_parser("add-briefing", help="Create a scheduled briefing")
    briefing_parser.add_argument("--user-id", required=True)
    briefing_parser.add_argument("--title", required=True)
    briefing_parser.add_argument(
        "--frequency",
        choices=[item.value for item in BriefingFrequency],
        default=BriefingFrequency.DAILY.value,
    )
    briefing_parser.add_argument("--time", default="08:00", help="Local HH:MM")
    briefing_parser.add_argument("--day", choices=list(DAYS_OF_WEEK), default=None)
    briefing_parser.add_argument("--timezone", default="UTC")
    briefing_parser.add_argument("--criteria", default=None)
    briefing_parser.add_argument("--email", action="store_true", help="Enable email delivery")
    briefing_parser.set_defaults(func=_cmd_add_briefing)

    source_parser = subparsers.add_parser("add-source", help="Attach a source to a briefing")
    source_parser.add_argument("--briefing-id", required=True)
    source_parser.add_argument("--name", required=True)
    source_parser.add_argument("--url", default=None)
    source_parser.add_argument(
        "--type",
        choices=[item.value for item in SourceType],
        default=SourceType.RSS.value,
    )
    source_parser.add_argument("--refresh", type=int, default=15, help="Refresh interval minutes")
    source_parser.add_argument("--prompt", default=None, help="Extraction prompt for WEB sources")
    source_parser.set_defaults(func=_cmd_add_source)

    validate_parser = subparsers.add_parser("validate-source", help="Probe a source locator")
    validate_parser.add_argument(
        "--type",
        choices=[item.value for item in SourceType],
        default=SourceType.RSS.value,
    )
    validate_parser.add_argument("--url", required=True)
    validate_parser.set_defaults(func=_cmd_validate_source)

    execute_parser = subparsers.add_parser("execute-briefing", help="Run a briefing immediately")
    execute_parser.add_argument("briefing_id")
    execute_parser.set_defaults(func=_cmd_execute_briefing)

    once_parser = subparsers.add_parser("run-once", help="Run every job once and drain the queues")
    once_parser.set_defaults(func=_cmd_run_once)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = configure_logging("briefcore")
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
