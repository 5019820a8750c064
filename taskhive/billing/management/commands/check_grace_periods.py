"""
Management command to run the grace period sweep by hand.

The same work runs daily from Celery beat (run_grace_period_sweep). This
command runs it synchronously, which is handy after an outage or to preview
what the next sweep would do.

Usage:
    python manage.py check_grace_periods
    python manage.py check_grace_periods --notifications
    python manage.py check_grace_periods --expirations --dry-run
"""

from django.core.management.base import BaseCommand

from taskhive.billing.grace_period import GracePeriodService


class Command(BaseCommand):
    help = "Send due grace period warnings and expire elapsed subscriptions."

    def add_arguments(self, parser):
        parser.add_argument(
            "--notifications",
            action="store_true",
            help="Only run the notification pass",
        )
        parser.add_argument(
            "--expirations",
            action="store_true",
            help="Only run the expiration pass",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would happen without sending or expiring anything",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        only_notifications = options["notifications"]
        only_expirations = options["expirations"]
        run_all = not only_notifications and not only_expirations
        prefix = "[DRY RUN] " if dry_run else ""

        service = GracePeriodService()

        if run_all or only_notifications:
            result = service.send_notifications(dry_run=dry_run)
            verb = "Would send" if dry_run else "Sent"
            self.stdout.write(
                self.style.SUCCESS(
                    f"{prefix}{verb} {result.notified} grace period notification(s), "
                    f"skipped {result.skipped}."
                )
            )
            if result.notification_failures:
                self.stdout.write(
                    self.style.WARNING(
                        f"{result.notification_failures} notification(s) failed; "
                        "see logs for details."
                    )
                )

        if run_all or only_expirations:
            result = service.expire_elapsed(dry_run=dry_run)
            verb = "Would expire" if dry_run else "Expired"
            self.stdout.write(
                self.style.SUCCESS(f"{prefix}{verb} {result.expired} subscription(s).")
            )
            if result.expiration_failures:
                self.stdout.write(
                    self.style.WARNING(
                        f"{result.expiration_failures} expiration(s) failed; "
                        "see logs for details."
                    )
                )
