"""
Celery tasks for the billing lifecycle.

Both tasks run on the "billing" queue inside the job envelope from
taskhive.core.jobs: 3 attempts with 10s/30s backoff, a soft time limit per
attempt, and a final-failure hook.

- process_webhook_event: applies one provider event (120s per attempt).
  After the last attempt fails the event is written to FailedWebhookEvent.
- run_grace_period_sweep: daily notification and expiration passes (300s
  per attempt). Per-subscription failures are handled inside the sweep;
  only a failure of the sweep as a whole reaches the envelope.
"""

import logging
from datetime import UTC
from datetime import datetime

from celery import shared_task

from taskhive.billing.grace_period import GracePeriodService
from taskhive.billing.models import FailedWebhookEvent
from taskhive.billing.webhooks import WebhookEvent
from taskhive.billing.webhooks import WebhookProcessor
from taskhive.core.jobs import LONG_JOB_TIME_LIMIT_SECONDS
from taskhive.core.jobs import WEBHOOK_TIME_LIMIT_SECONDS
from taskhive.core.jobs import JobTask
from taskhive.core.jobs import job_options

logger = logging.getLogger(__name__)


def record_failed_webhook_event(payload: dict, exc: Exception, attempts: int) -> FailedWebhookEvent:
    """Set a poison event aside for manual review."""
    failed = FailedWebhookEvent.objects.create(
        event_id=str(payload.get("id") or ""),
        provider=payload.get("provider") or "stripe",
        event_type=str(payload.get("type") or ""),
        payload=payload,
        error_message=f"{type(exc).__name__}: {exc}",
        attempts=attempts,
    )
    logger.error(
        "Webhook event %s (%s) moved to failed events after %s attempts: %s",
        failed.event_id,
        failed.event_type,
        attempts,
        exc,
    )
    return failed


@shared_task(
    bind=True,
    base=JobTask,
    name="taskhive.billing.process_webhook_event",
    queue="billing",
    **job_options(WEBHOOK_TIME_LIMIT_SECONDS),
)
def process_webhook_event(self, payload: dict) -> dict:
    """
    Apply one provider webhook event.

    Args:
        payload: ``WebhookEvent.to_payload()`` output.

    Returns:
        ``WebhookResult.to_dict()``
    """
    logger.info(
        "Processing webhook event %s (%s): task_id=%s attempt=%s",
        payload.get("id"),
        payload.get("type"),
        self.request.id,
        self.attempt,
    )
    try:
        event = WebhookEvent.from_payload(
            payload,
            provider=payload.get("provider") or "stripe",
        )
        result = WebhookProcessor().process(event)
    except Exception as exc:
        self.retry_or_fail(
            exc,
            on_final_failure=lambda error, attempts: record_failed_webhook_event(
                payload,
                error,
                attempts,
            ),
        )
    return result.to_dict()


@shared_task(
    bind=True,
    base=JobTask,
    name="taskhive.billing.run_grace_period_sweep",
    queue="billing",
    **job_options(LONG_JOB_TIME_LIMIT_SECONDS),
)
def run_grace_period_sweep(self, dry_run: bool = False) -> dict:  # noqa: FBT001, FBT002
    """Send due grace period warnings and expire elapsed subscriptions."""
    logger.info("Starting grace period sweep: task_id=%s", self.request.id)
    try:
        result = GracePeriodService().run(dry_run=dry_run)
    except Exception as exc:
        self.retry_or_fail(exc)

    logger.info("Grace period sweep finished: %s", result.to_dict())
    return {
        "status": "completed",
        **result.to_dict(),
        "dry_run": dry_run,
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }
