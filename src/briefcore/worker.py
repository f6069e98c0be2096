from __future__ import annotations

import argparse
import logging
import os
import signal
import threading

import uvicorn

from .admin import attach_engine
from .config import ConfigError, load_config
from .engine import Engine
from .utils import json_dumps, log_event, configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="briefcore-worker")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one scheduling and recovery cycle, drain the queues and exit",
    )
    parser.add_argument("--admin-host", default=os.environ.get("BC_ADMIN_HOST", "127.0.0.1"))
    parser.add_argument(
        "--admin-port",
        type=int,
        default=int(os.environ.get("BC_ADMIN_PORT", "0")),
        help="Serve the admin API on this port; 0 disables it",
    )
    return parser


def run_once(engine: Engine) -> int:
    results = engine.run_jobs_once()
    print(json_dumps(results))
    return 0


def run_forever(engine: Engine, admin_host: str, admin_port: int, logger: logging.Logger) -> int:
    stop_event = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        log_event(logger, logging.INFO, "worker_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    engine.start()
    server = None
    server_thread = None
    if admin_port:
        server = uvicorn.Server(
            uvicorn.Config(attach_engine(engine), host=admin_host, port=admin_port, log_level="warning")
        )
        # Signals stay with the main thread.
        server.install_signal_handlers = lambda: None
        server_thread = threading.Thread(target=server.run, name="admin-api", daemon=True)
        server_thread.start()
        log_event(logger, logging.INFO, "admin_api_started", host=admin_host, port=admin_port)

    log_event(logger, logging.INFO, "worker_started", pid=os.getpid())
    stop_event.wait()

    if server is not None:
        server.should_exit = True
        server_thread.join(timeout=5)
    dropped = engine.stop()
    log_event(logger, logging.INFO, "worker_stopped", dropped=sum(dropped.values()))
    return 0


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = configure_logging("briefcore.worker")
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    engine = Engine(config)
    if args.once:
        return run_once(engine)
    return run_forever(engine, args.admin_host, args.admin_port, logger)


if __name__ == "__main__":
    raise SystemExit(main())
