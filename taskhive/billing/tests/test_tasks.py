"""
Tests for the billing Celery tasks.

Tasks run eagerly in tests (CELERY_TASK_ALWAYS_EAGER). The webhook tests turn
off eager propagation so retries run inline and the final failure shows up
on the returned result.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.exceptions import MalformedWebhookEvent
from taskhive.billing.exceptions import SubscriptionNotFound
from taskhive.billing.models import FailedWebhookEvent
from taskhive.billing.models import ProcessedWebhookEvent
from taskhive.billing.tasks import process_webhook_event
from taskhive.billing.tasks import run_grace_period_sweep
from taskhive.billing.tests.factories import SubscriptionFactory
from taskhive.billing.webhooks import WebhookProcessor
from taskhive.core.jobs import MAX_ATTEMPTS


def payload(event_id, event_type, data):
    return {"id": event_id, "type": event_type, "data": data, "provider": "stripe"}


@pytest.mark.django_db
@pytest.mark.usefixtures("celery_retries_inline")
class TestProcessWebhookEvent:
    def test_processes_event(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id="sub_task",
        )

        result = process_webhook_event.delay(
            payload("evt_task", "invoice.payment_failed", {"subscription": "sub_task"}),
        ).get()

        subscription.refresh_from_db()
        assert result["outcome"] == "processed"
        assert result["subscription_id"] == subscription.pk
        assert subscription.status == SubscriptionStatus.PAST_DUE

    def test_duplicate_delivery_is_a_noop(self):
        SubscriptionFactory(external_subscription_id="sub_dup")
        event = payload("evt_dup", "invoice.upcoming", {"subscription": "sub_dup"})

        process_webhook_event.delay(event).get()
        result = process_webhook_event.delay(event).get()

        assert result["outcome"] == "duplicate"
        assert ProcessedWebhookEvent.objects.filter(event_id="evt_dup").count() == 1

    def test_poison_event_lands_in_failed_events(self):
        event = payload("evt_poison", "invoice.payment_failed", {"subscription": "sub_missing"})

        with patch(
            "taskhive.billing.webhooks.WebhookProcessor.process",
            side_effect=SubscriptionNotFound("Subscription not found: sub_missing"),
        ) as process:
            result = process_webhook_event.delay(event)

        assert result.state == "FAILURE"
        assert isinstance(result.result, SubscriptionNotFound)
        assert process.call_count == MAX_ATTEMPTS
        failed = FailedWebhookEvent.objects.get(event_id="evt_poison")
        assert failed.attempts == MAX_ATTEMPTS
        assert failed.event_type == "invoice.payment_failed"
        assert failed.payload == event
        assert "SubscriptionNotFound" in failed.error_message
        assert not ProcessedWebhookEvent.objects.filter(event_id="evt_poison").exists()

    def test_transient_failure_is_retried(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id="sub_flaky",
        )
        real_process = WebhookProcessor.process
        calls = []

        def flaky(self, event):
            calls.append(event.id)
            if len(calls) == 1:
                raise ConnectionError("database went away")
            return real_process(self, event)

        with patch.object(WebhookProcessor, "process", flaky):
            result = process_webhook_event.delay(
                payload("evt_flaky", "invoice.payment_failed", {"subscription": "sub_flaky"}),
            ).get()

        subscription.refresh_from_db()
        assert len(calls) == 2
        assert result["outcome"] == "processed"
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert not FailedWebhookEvent.objects.exists()

    def test_malformed_payload_is_recorded(self):
        result = process_webhook_event.delay({"id": "evt_bad", "type": "invoice.upcoming"})

        assert isinstance(result.result, MalformedWebhookEvent)
        assert FailedWebhookEvent.objects.filter(event_id="evt_bad").exists()


@pytest.mark.django_db
class TestRunGracePeriodSweep:
    def test_sweep_reports_counts(self):
        now = timezone.now()
        SubscriptionFactory(status=SubscriptionStatus.CANCELED, ends_at=now - timedelta(days=1))

        with patch(
            "taskhive.billing.grace_period.send_grace_period_notification",
            return_value=True,
        ):
            result = run_grace_period_sweep.delay().get()

        assert result["status"] == "completed"
        assert result["expired"] == 1
        assert result["dry_run"] is False
        assert "timestamp" in result

    def test_dry_run_changes_nothing(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.CANCELED,
            ends_at=timezone.now() - timedelta(days=1),
        )

        result = run_grace_period_sweep.delay(dry_run=True).get()

        subscription.refresh_from_db()
        assert result["expired"] == 1
        assert result["dry_run"] is True
        assert subscription.status == SubscriptionStatus.CANCELED
