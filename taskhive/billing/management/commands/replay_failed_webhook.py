"""
Management command to replay a webhook event that failed permanently.

Failed events are never retried automatically. Once an operator has fixed
the cause (e.g. created the missing plan), this command puts the stored
payload back on the billing queue and removes the failure record.

Usage:
    python manage.py replay_failed_webhook evt_123
    python manage.py replay_failed_webhook evt_123 --dry-run
"""

from django.core.management.base import BaseCommand
from django.core.management.base import CommandError
from django.db import transaction

from taskhive.billing.constants import WebhookProvider
from taskhive.billing.models import FailedWebhookEvent
from taskhive.billing.tasks import process_webhook_event


class Command(BaseCommand):
    help = "Re-enqueue a failed webhook event after manual review."

    def add_arguments(self, parser):
        parser.add_argument("event_id", help="Provider event ID, e.g. evt_123")
        parser.add_argument(
            "--provider",
            default=WebhookProvider.STRIPE,
            choices=WebhookProvider.values,
            help="Webhook provider (default: stripe)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be replayed without enqueuing it",
        )

    def handle(self, *args, **options):
        event_id = options["event_id"]
        provider = options["provider"]

        failures = FailedWebhookEvent.objects.filter(
            event_id=event_id,
            provider=provider,
        ).order_by("-failed_at")
        failed = failures.first()
        if failed is None:
            raise CommandError(f"No failed webhook event {provider}:{event_id}")

        if options["dry_run"]:
            self.stdout.write(
                self.style.WARNING(
                    f"[DRY RUN] Would replay {failed.event_type} event {event_id} "
                    f"(last error: {failed.error_message})"
                )
            )
            return

        payload = dict(failed.payload)
        payload.setdefault("provider", provider)

        with transaction.atomic():
            deleted, _ = failures.delete()
            transaction.on_commit(lambda: process_webhook_event.delay(payload))

        self.stdout.write(
            self.style.SUCCESS(
                f"Replayed {failed.event_type} event {event_id}; "
                f"removed {deleted} failure record(s)."
            )
        )
