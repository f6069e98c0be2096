from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timedelta
from typing import Any, Callable

from ..storage import recover_stuck_briefings, recover_stuck_items, recover_stuck_sources
from ..utils import isoformat_utc, log_event, utc_now


class _RecoveryJob:
    name = "recovery"
    event = "stuck_entities_recovered"

    def __init__(
        self,
        connect: Callable[[], Any],
        threshold_minutes: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._connect = connect
        self.threshold_minutes = threshold_minutes
        self._clock = clock
        self._logger = logging.getLogger(f"briefcore.jobs.{self.name}")

    def run(self) -> int:
        threshold = isoformat_utc(self._clock() - timedelta(minutes=self.threshold_minutes))
        with closing(self._connect()) as conn:
            recovered = self._recover(conn, threshold)
        if recovered > 0:
            log_event(
                self._logger,
                logging.WARNING,
                self.event,
                count=recovered,
                threshold_minutes=self.threshold_minutes,
            )
        return recovered

    __call__ = run

    def _recover(self, conn, threshold_iso: str) -> int:
        raise NotImplementedError


class StuckSourceRecoveryJob(_RecoveryJob):
    """QUEUED or FETCHING sources past the threshold go back to IDLE.

    The lifecycle status is left alone: being stuck is not a source error.
    """

    name = "stuck_source_recovery"
    event = "stuck_sources_recovered"

    def _recover(self, conn, threshold_iso: str) -> int:
        return recover_stuck_sources(conn, threshold_iso)


class StuckBriefingRecoveryJob(_RecoveryJob):
    """QUEUED or PROCESSING briefings past the threshold become ERROR.

    No automatic retry; an operator resets the briefing.
    """

    name = "stuck_briefing_recovery"
    event = "stuck_briefings_recovered"

    def _recover(self, conn, threshold_iso: str) -> int:
        message = f"Briefing stuck in processing for more than {self.threshold_minutes} minutes"
        return recover_stuck_briefings(conn, threshold_iso, message)


class StuckItemRecoveryJob(_RecoveryJob):
    name = "stuck_item_recovery"
    event = "stuck_items_recovered"

    def _recover(self, conn, threshold_iso: str) -> int:
        message = f"Item stuck in processing for more than {self.threshold_minutes} minutes"
        return recover_stuck_items(conn, threshold_iso, message)
