"""
Execution envelope for background jobs.

Every billing and bulk job runs on Celery with the same contract:

- At most MAX_ATTEMPTS attempts, with RETRY_BACKOFF_SECONDS between them.
- A soft wall-clock limit per attempt. Hitting it raises
  SoftTimeLimitExceeded inside the job, which is retried like any other
  failure; the hard limit sits TIME_LIMIT_GRACE_SECONDS above it.
- Once attempts run out, a job-specific final-failure hook runs (write a
  FailedWebhookEvent, store a failure record) and the exception is
  re-raised so Celery marks the task failed.
- Jobs receive an explicit payload (built with a dataclass's
  ``to_payload()``) and keep nothing between invocations. Whatever they
  need to share goes through the database or the cache.

Usage:
    @shared_task(
        bind=True,
        base=JobTask,
        name="taskhive.billing.process_webhook_event",
        **job_options(WEBHOOK_TIME_LIMIT_SECONDS),
    )
    def process_webhook_event(self, payload: dict) -> dict:
        try:
            return do_work(payload)
        except Exception as exc:
            self.retry_or_fail(exc, on_final_failure=record_failure)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC
from datetime import datetime
from typing import Any

from celery import Task
from django.core.cache import cache

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = (10, 30, 60)

WEBHOOK_TIME_LIMIT_SECONDS = 120
LONG_JOB_TIME_LIMIT_SECONDS = 300
TIME_LIMIT_GRACE_SECONDS = 30

JOB_RESULT_TTL_SECONDS = 24 * 60 * 60


def backoff_for(retries: int) -> int:
    """Seconds to wait before the next attempt, given retries so far."""
    index = min(max(retries, 0), len(RETRY_BACKOFF_SECONDS) - 1)
    return RETRY_BACKOFF_SECONDS[index]


def job_options(soft_time_limit: int) -> dict[str, Any]:
    """Celery task options for a job with the given per-attempt limit."""
    return {
        "soft_time_limit": soft_time_limit,
        "time_limit": soft_time_limit + TIME_LIMIT_GRACE_SECONDS,
    }


class JobTask(Task):
    """
    Base class for retrying background jobs.

    Subclasses get late acks (a worker crash redelivers the message) and a
    bounded retry budget. Retries are driven by ``retry_or_fail()`` rather
    than ``autoretry_for`` so the final failure can be recorded before the
    task is marked failed.
    """

    max_retries = MAX_ATTEMPTS - 1
    acks_late = True
    reject_on_worker_lost = True

    @property
    def attempt(self) -> int:
        """1-based number of the attempt currently running."""
        return (self.request.retries or 0) + 1

    def attempts_exhausted(self) -> bool:
        return (self.request.retries or 0) >= self.max_retries

    def retry_or_fail(
        self,
        exc: Exception,
        *,
        on_final_failure: Callable[[Exception, int], None] | None = None,
    ):
        """
        Schedule the next attempt, or give up.

        Always raises: either celery's Retry, or ``exc`` itself once the
        attempt budget is spent (after ``on_final_failure(exc, attempts)``
        has run).
        """
        if self.attempts_exhausted():
            logger.error(
                "Job %s failed permanently after %s attempts: task_id=%s error=%s",
                self.name,
                self.attempt,
                self.request.id,
                exc,
            )
            if on_final_failure is not None:
                on_final_failure(exc, self.attempt)
            raise exc

        countdown = backoff_for(self.request.retries or 0)
        logger.warning(
            "Job %s attempt %s failed, retrying in %ss: task_id=%s error=%s",
            self.name,
            self.attempt,
            countdown,
            self.request.id,
            exc,
        )
        raise self.retry(exc=exc, countdown=countdown)


class JobResultStore:
    """
    Short-lived job results, keyed by job id.

    Results and failure records are kept in the Django cache for
    JOB_RESULT_TTL_SECONDS. Production points the default cache at Redis so
    web processes can read what workers wrote.
    """

    def __init__(self, namespace: str, *, ttl: int = JOB_RESULT_TTL_SECONDS):
        self.namespace = namespace
        self.ttl = ttl

    def _key(self, kind: str, job_id: str) -> str:
        return f"taskhive:jobs:{self.namespace}:{kind}:{job_id}"

    def store_result(self, job_id: str, payload: dict[str, Any]) -> None:
        record = {
            **payload,
            "status": "completed",
            "job_id": job_id,
            "completed_at": datetime.now(tz=UTC).isoformat(),
        }
        cache.set(self._key("result", job_id), record, timeout=self.ttl)

    def store_failure(self, job_id: str, payload: dict[str, Any]) -> None:
        record = {
            **payload,
            "status": "failed",
            "job_id": job_id,
            "failed_at": datetime.now(tz=UTC).isoformat(),
        }
        cache.set(self._key("failure", job_id), record, timeout=self.ttl)

    def get(self, job_id: str) -> dict[str, Any] | None:
        """Return the result, the failure record, or None if neither is kept."""
        result = cache.get(self._key("result", job_id))
        if result is not None:
            return result
        return cache.get(self._key("failure", job_id))
