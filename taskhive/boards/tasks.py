"""
Celery tasks for bulk task operations.

Jobs run on the "bulk_operations" queue with the shared job envelope
(taskhive.core.jobs). The summary of each run is kept in the job result
store for a day so the caller can poll it by job id.
"""

import logging

from celery import shared_task

from taskhive.boards.bulk_operations import BulkOperationError
from taskhive.boards.bulk_operations import BulkOperationPayload
from taskhive.boards.bulk_operations import TaskBulkOperationService
from taskhive.core.jobs import LONG_JOB_TIME_LIMIT_SECONDS
from taskhive.core.jobs import JobResultStore
from taskhive.core.jobs import JobTask
from taskhive.core.jobs import job_options

logger = logging.getLogger(__name__)

BULK_RESULTS_NAMESPACE = "bulk_operations"


def bulk_result_store() -> JobResultStore:
    return JobResultStore(BULK_RESULTS_NAMESPACE)


def enqueue_bulk_task_operation(payload: BulkOperationPayload) -> str:
    """Queue a bulk operation and return its job id."""
    async_result = process_bulk_task_operation.apply_async(args=[payload.to_payload()])
    logger.info(
        "Queued bulk operation %s on %s task(s): job_id=%s",
        payload.kind,
        len(payload.task_ids),
        async_result.id,
    )
    return async_result.id


def get_bulk_operation_result(job_id: str) -> dict | None:
    return bulk_result_store().get(job_id)


@shared_task(
    bind=True,
    base=JobTask,
    name="taskhive.boards.process_bulk_task_operation",
    queue="bulk_operations",
    **job_options(LONG_JOB_TIME_LIMIT_SECONDS),
)
def process_bulk_task_operation(self, payload: dict) -> dict:
    """
    Apply one bulk operation.

    Args:
        payload: ``BulkOperationPayload.to_payload()`` output.

    Returns:
        ``BulkOperationResult.to_dict()``, also stored under the job id.
    """
    job_id = self.request.id
    store = bulk_result_store()

    def record_failure(exc: Exception, attempts: int) -> None:
        store.store_failure(
            job_id,
            {
                "operation": payload.get("kind"),
                "error": str(exc),
                "attempts": attempts,
            },
        )

    logger.info(
        "Processing bulk operation %s: job_id=%s attempt=%s",
        payload.get("kind"),
        job_id,
        self.attempt,
    )
    try:
        operation = BulkOperationPayload.from_payload(payload)
        result = TaskBulkOperationService().execute(operation)
    except BulkOperationError as exc:
        # Bad input will not get better on retry.
        logger.error("Bulk operation rejected: job_id=%s error=%s", job_id, exc)
        record_failure(exc, self.attempt)
        raise
    except Exception as exc:
        self.retry_or_fail(exc, on_final_failure=record_failure)

    summary = result.to_dict()
    store.store_result(job_id, summary)
    return summary
