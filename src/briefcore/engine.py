from __future__ import annotations

import logging
from contextlib import closing
from functools import partial
from typing import Any, Callable

from .config import Config
from .db import connect_db
from .fetchers.registry import FetcherRegistry, build_fetcher_registry
from .health import briefing_execution_health, feed_ingestion_health, news_processing_health
from .jobs.briefing_scheduler import BriefingSchedulerJob
from .jobs.feed_scheduler import FeedSchedulerJob
from .jobs.processing_scheduler import ProcessingSchedulerJob
from .jobs.recovery import StuckBriefingRecoveryJob, StuckItemRecoveryJob, StuckSourceRecoveryJob
from .llm import build_ai_service
from .periodic import PeriodicTask
from .processors.briefing import BriefingWorker
from .processors.fetch import FetchWorker
from .processors.processing import ProcessingWorker
from .queue import BoundedJobQueue, WorkerPool
from .services.email_delivery import ReportEmailDeliveryService, build_email_sender
from .utils import log_event


class Engine:
    """Wires queues, pools, processors and periodic jobs for one process."""

    def __init__(
        self,
        config: Config,
        *,
        connect: Callable[[], Any] | None = None,
        ai_service=None,
        registry: FetcherRegistry | None = None,
        email_sender=None,
    ) -> None:
        self.config = config
        self.connect = connect or partial(connect_db, config.paths.state_db)
        self.ai_service = ai_service or build_ai_service(config.ai)
        self.registry = registry or build_fetcher_registry(config, self.ai_service)
        self.email_service = ReportEmailDeliveryService(
            self.connect,
            self.ai_service,
            email_sender or build_email_sender(config.email),
            config.email.from_address,
        )
        self._logger = logging.getLogger("briefcore.engine")
        self._started = False

        jobs = config.jobs
        workers = jobs.workers
        self.fetch_queue = BoundedJobQueue("fetch", jobs.feed_ingestion.queue_capacity)
        self.processing_queue = BoundedJobQueue("processing", jobs.news_processing.queue_capacity)
        self.briefing_queue = BoundedJobQueue("briefing", jobs.briefing_execution.queue_capacity)

        self.fetch_worker = FetchWorker(self.connect, self.registry, jobs.feed_ingestion)
        self.processing_worker = ProcessingWorker(self.connect, self.ai_service, jobs.news_processing)
        self.briefing_worker = BriefingWorker(
            self.connect, jobs.briefing_execution, self.email_service
        )

        pool_options = {
            "poll_timeout_seconds": workers.poll_timeout_seconds,
            "shutdown_grace_seconds": workers.shutdown_grace_seconds,
        }
        self.fetch_pool = WorkerPool(
            "fetch",
            self.fetch_queue,
            self.fetch_worker,
            jobs.feed_ingestion.worker_count,
            **pool_options,
        )
        self.processing_pool = WorkerPool(
            "processing",
            self.processing_queue,
            self.processing_worker,
            jobs.news_processing.worker_count,
            **pool_options,
        )
        self.briefing_pool = WorkerPool(
            "briefing",
            self.briefing_queue,
            self.briefing_worker,
            jobs.briefing_execution.worker_count,
            **pool_options,
        )

        self.feed_scheduler = FeedSchedulerJob(self.connect, self.fetch_queue, jobs.feed_ingestion)
        self.processing_scheduler = ProcessingSchedulerJob(
            self.connect, self.processing_queue, jobs.news_processing
        )
        self.briefing_scheduler = BriefingSchedulerJob(self.connect, self.briefing_queue)
        self.source_recovery = StuckSourceRecoveryJob(
            self.connect, jobs.feed_ingestion.stuck_threshold_minutes
        )
        self.item_recovery = StuckItemRecoveryJob(
            self.connect, jobs.news_processing.stuck_threshold_minutes
        )
        self.briefing_recovery = StuckBriefingRecoveryJob(
            self.connect, jobs.briefing_execution.stuck_threshold_minutes
        )
        self.tasks = self._build_tasks()

    @property
    def pools(self) -> list[WorkerPool]:
        return [self.fetch_pool, self.processing_pool, self.briefing_pool]

    def _build_tasks(self) -> list[PeriodicTask]:
        jobs = self.config.jobs
        tasks: list[PeriodicTask] = []
        if jobs.feed_scheduling.enabled:
            tasks.append(
                PeriodicTask(
                    "feed_scheduler",
                    self.feed_scheduler.run,
                    jobs.feed_scheduling.interval_seconds,
                )
            )
        if jobs.feed_recovery.enabled:
            tasks.append(
                PeriodicTask(
                    "stuck_source_recovery",
                    self.source_recovery.run,
                    jobs.feed_recovery.interval_seconds,
                    initial_delay_seconds=jobs.feed_recovery.interval_seconds,
                )
            )
        if jobs.news_processing.enabled:
            tasks.append(
                PeriodicTask(
                    "processing_scheduler",
                    self.processing_scheduler.run,
                    jobs.news_processing.interval_seconds,
                )
            )
            tasks.append(
                PeriodicTask(
                    "stuck_item_recovery",
                    self.item_recovery.run,
                    jobs.news_processing.recovery_interval_seconds,
                    initial_delay_seconds=jobs.news_processing.recovery_interval_seconds,
                )
            )
        if jobs.briefing_execution.enabled:
            tasks.append(
                PeriodicTask(
                    "briefing_scheduler",
                    self.briefing_scheduler.run,
                    jobs.briefing_execution.interval_seconds,
                )
            )
            tasks.append(
                PeriodicTask(
                    "stuck_briefing_recovery",
                    self.briefing_recovery.run,
                    jobs.briefing_execution.recovery_interval_seconds,
                    initial_delay_seconds=jobs.briefing_execution.recovery_interval_seconds,
                )
            )
        return tasks

    def start(self) -> None:
        if self._started:
            return
        for pool in self.pools:
            pool.start()
        for task in self.tasks:
            task.start()
        self._started = True
        log_event(self._logger, logging.INFO, "engine_started", tasks=len(self.tasks))

    def stop(self) -> dict[str, int]:
        """Stop periodic jobs first, then pools; returns dropped ids per queue."""
        for task in self.tasks:
            task.stop(timeout=5)
        dropped = {pool.name: pool.shutdown() for pool in self.pools}
        self._started = False
        log_event(self._logger, logging.INFO, "engine_stopped", **{f"dropped_{k}": v for k, v in dropped.items()})
        return dropped

    def run_jobs_once(self) -> dict[str, int]:
        """Run one recovery and scheduling cycle and drain every queue in this thread."""
        results: dict[str, int] = {}
        results["stuck_sources"] = self.source_recovery.run()
        results["stuck_items"] = self.item_recovery.run()
        results["stuck_briefings"] = self.briefing_recovery.run()
        results["sources_enqueued"] = self.feed_scheduler.run()
        results["sources_processed"] = self._drain(self.fetch_pool)
        results["items_enqueued"] = self.processing_scheduler.run()
        results["items_processed"] = self._drain(self.processing_pool)
        results["briefings_enqueued"] = self.briefing_scheduler.run()
        results["briefings_processed"] = self._drain(self.briefing_pool)
        log_event(self._logger, logging.INFO, "run_once_completed", **results)
        return results

    def _drain(self, pool: WorkerPool) -> int:
        processed = 0
        while True:
            entity_id = pool.queue.poll(0)
            if entity_id is None:
                return processed
            pool.run_job(entity_id)
            processed += 1

    def health(self) -> dict[str, Any]:
        jobs = self.config.jobs
        with closing(self.connect()) as conn:
            components = {
                "feed_ingestion": feed_ingestion_health(
                    conn, self.fetch_queue, jobs.feed_ingestion.stuck_threshold_minutes
                ),
                "news_processing": news_processing_health(
                    conn, self.processing_queue, jobs.news_processing.stuck_threshold_minutes
                ),
                "briefing_execution": briefing_execution_health(
                    conn, self.briefing_queue, jobs.briefing_execution.stuck_threshold_minutes
                ),
            }
        overall = "UP" if all(c["status"] == "UP" for c in components.values()) else "DOWN"
        return {"status": overall, "components": components}

    def queue_stats(self) -> dict[str, Any]:
        return {pool.name: pool.stats() for pool in self.pools}
