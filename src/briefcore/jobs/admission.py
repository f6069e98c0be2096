from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from ..queue import BoundedJobQueue
from ..utils import log_event

T = TypeVar("T")


def filter_by_credits(
    candidates: Iterable[T],
    owner_of: Callable[[T], str],
    users_with_credits: set[str],
) -> tuple[list[T], int]:
    """Split candidates by whether their owner may consume credits; returns (kept, skipped)."""
    kept: list[T] = []
    skipped = 0
    for candidate in candidates:
        if owner_of(candidate) in users_with_credits:
            kept.append(candidate)
        else:
            skipped += 1
    return kept, skipped


def enqueue_candidates(
    job_queue: BoundedJobQueue,
    entity_ids: Iterable[str],
    mark_queued: Callable[[str], bool],
    revert_queued: Callable[[str], bool],
    logger: logging.Logger,
    *,
    kind: str,
) -> int:
    """Commit each id's queued state, then hand it to the queue.

    The queued state is committed before the hand-off so a worker popping the
    id sees it; a failed hand-off reverts it immediately.
    """
    enqueued = 0
    for entity_id in entity_ids:
        if not job_queue.can_accept():
            log_event(
                logger,
                logging.INFO,
                "queue_filled_during_cycle",
                kind=kind,
                queue=job_queue.name,
                enqueued=enqueued,
            )
            break
        if not mark_queued(entity_id):
            log_event(logger, logging.DEBUG, "candidate_state_changed", kind=kind, entity_id=entity_id)
            continue
        if job_queue.enqueue(entity_id):
            enqueued += 1
            continue
        reverted = revert_queued(entity_id)
        log_event(
            logger,
            logging.WARNING,
            "enqueue_failed_reverted",
            kind=kind,
            entity_id=entity_id,
            reverted=reverted,
        )
    return enqueued
