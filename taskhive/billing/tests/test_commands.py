"""
Tests for billing management commands.

Tests check_grace_periods and replay_failed_webhook.
"""

from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.models import FailedWebhookEvent
from taskhive.billing.tests.factories import FailedWebhookEventFactory
from taskhive.billing.tests.factories import SubscriptionFactory


@patch(
    "taskhive.billing.grace_period.send_grace_period_notification",
    return_value=True,
)
class CheckGracePeriodsCommandTests(TestCase):
    def setUp(self):
        now = timezone.now()
        self.due = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=1),
        )
        self.elapsed = SubscriptionFactory(
            status=SubscriptionStatus.CANCELED,
            ends_at=now - timedelta(days=1),
        )

    def test_runs_both_passes(self, notifier):
        out = StringIO()
        call_command("check_grace_periods", stdout=out)

        output = out.getvalue()
        self.assertIn("Sent 1 grace period notification(s), skipped 0.", output)
        self.assertIn("Expired 1 subscription(s).", output)
        notifier.assert_called_once()
        self.elapsed.refresh_from_db()
        self.assertEqual(self.elapsed.status, SubscriptionStatus.EXPIRED)

    def test_notifications_only(self, notifier):
        out = StringIO()
        call_command("check_grace_periods", "--notifications", stdout=out)

        output = out.getvalue()
        self.assertIn("Sent 1", output)
        self.assertNotIn("Expired", output)
        self.elapsed.refresh_from_db()
        self.assertEqual(self.elapsed.status, SubscriptionStatus.CANCELED)

    def test_expirations_only(self, notifier):
        out = StringIO()
        call_command("check_grace_periods", "--expirations", stdout=out)

        self.assertIn("Expired 1 subscription(s).", out.getvalue())
        notifier.assert_not_called()

    def test_dry_run(self, notifier):
        out = StringIO()
        call_command("check_grace_periods", "--dry-run", stdout=out)

        output = out.getvalue()
        self.assertIn("[DRY RUN] Would send 1 grace period notification(s)", output)
        self.assertIn("[DRY RUN] Would expire 1 subscription(s).", output)
        notifier.assert_not_called()
        self.elapsed.refresh_from_db()
        self.assertEqual(self.elapsed.status, SubscriptionStatus.CANCELED)

    def test_reports_failed_notifications(self, notifier):
        notifier.return_value = False
        out = StringIO()
        call_command("check_grace_periods", "--notifications", stdout=out)

        self.assertIn("1 notification(s) failed", out.getvalue())


class ReplayFailedWebhookCommandTests(TestCase):
    @patch("taskhive.billing.management.commands.replay_failed_webhook.process_webhook_event")
    def test_replays_and_removes_failure(self, task):
        failed = FailedWebhookEventFactory(event_id="evt_replay")
        out = StringIO()

        with self.captureOnCommitCallbacks(execute=True):
            call_command("replay_failed_webhook", "evt_replay", stdout=out)

        task.delay.assert_called_once()
        self.assertEqual(task.delay.call_args.args[0]["id"], "evt_replay")
        self.assertFalse(FailedWebhookEvent.objects.filter(pk=failed.pk).exists())
        self.assertIn(
            "Replayed invoice.payment_failed event evt_replay; removed 1 failure record(s).",
            out.getvalue(),
        )

    @patch("taskhive.billing.management.commands.replay_failed_webhook.process_webhook_event")
    def test_dry_run_keeps_failure(self, task):
        FailedWebhookEventFactory(event_id="evt_keep")
        out = StringIO()

        call_command("replay_failed_webhook", "evt_keep", "--dry-run", stdout=out)

        task.delay.assert_not_called()
        self.assertTrue(FailedWebhookEvent.objects.filter(event_id="evt_keep").exists())
        self.assertIn("[DRY RUN] Would replay", out.getvalue())

    def test_unknown_event_raises(self):
        with self.assertRaises(CommandError):
            call_command("replay_failed_webhook", "evt_nope")
