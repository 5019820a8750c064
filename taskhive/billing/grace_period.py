"""
Grace period escalation (dunning).

A past due or canceled subscription keeps access until ``ends_at``. The
daily sweep does two independent passes over a bounded set of rows:

1. Notifications: subscriptions whose ``ends_at`` falls inside the warning
   horizon get a warning email on each scheduled day. Which day applies is
   decided by ``notification_day_for()``; the schedule itself comes from
   the BILLING_GRACE_NOTIFICATION_DAYS setting.
2. Expirations: subscriptions whose ``ends_at`` has passed are moved to
   EXPIRED through the state machine.

Each subscription is handled on its own. A failure is logged and counted
and the pass moves on, so one bad row never blocks the rest.

A warning counts as sent once a GRACE_PERIOD_NOTIFICATION SubscriptionEvent
exists for that day number inside the look-back window. The marker is only
written after the notifier confirms the send, which makes re-running the
sweep on the same day safe.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import asdict
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from taskhive.billing.constants import DEFAULT_GRACE_NOTIFICATION_DAYS
from taskhive.billing.constants import DEFAULT_GRACE_NOTIFICATION_WINDOW_DAYS
from taskhive.billing.constants import DEFAULT_GRACE_SWEEP_BATCH_SIZE
from taskhive.billing.constants import GRACE_PERIOD_STATUSES
from taskhive.billing.constants import SubscriptionEventType
from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.exceptions import GracePeriodError
from taskhive.billing.models import Subscription
from taskhive.billing.state_machine import SubscriptionStateMachine
from taskhive.notifications.emails import send_grace_period_notification

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

Notifier = Callable[[Subscription, int], bool]


def days_until(ends_at: datetime, now: datetime) -> int:
    """Whole days left before ``ends_at``; the final partial day counts as 0."""
    return math.floor((ends_at - now).total_seconds() / SECONDS_PER_DAY)


def notification_day_for(days_remaining: int, schedule: Sequence[int]) -> int | None:
    """
    Map days remaining to the warning day that covers it.

    The result is the smallest scheduled day that is still >= the days
    remaining. With a schedule of (7, 3, 1, 0), a subscription with 5 days
    left is due its day 7 warning and one with 2 days left its day 3
    warning. A sweep that missed a day therefore still sends the warning it
    skipped. Returns None once the subscription is past its end or further
    out than the earliest warning.
    """
    if days_remaining < 0:
        return None
    covering = [day for day in schedule if day >= days_remaining]
    return min(covering) if covering else None


def notification_schedule() -> tuple[int, ...]:
    days = getattr(settings, "BILLING_GRACE_NOTIFICATION_DAYS", DEFAULT_GRACE_NOTIFICATION_DAYS)
    return tuple(sorted({int(day) for day in days}, reverse=True))


@dataclass
class GracePeriodSweepResult:
    notified: int = 0
    skipped: int = 0
    notification_failures: int = 0
    expired: int = 0
    expiration_failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class GracePeriodStatus:
    in_grace_period: bool
    ends_at: datetime | None
    days_remaining: int | None
    next_notification_day: int | None


class GracePeriodService:
    """
    Runs the notification and expiration passes.

    Usage:
        result = GracePeriodService().run()
        logger.info("sweep: %s", result.to_dict())
    """

    def __init__(
        self,
        *,
        state_machine: SubscriptionStateMachine | None = None,
        notifier: Notifier | None = None,
        schedule: Sequence[int] | None = None,
        window_days: int | None = None,
        batch_size: int | None = None,
    ):
        self.state_machine = state_machine or SubscriptionStateMachine()
        self.notifier = notifier or send_grace_period_notification
        self.schedule = tuple(schedule) if schedule is not None else notification_schedule()
        self.window_days = window_days or getattr(
            settings,
            "BILLING_GRACE_NOTIFICATION_WINDOW_DAYS",
            DEFAULT_GRACE_NOTIFICATION_WINDOW_DAYS,
        )
        self.batch_size = batch_size or getattr(
            settings,
            "BILLING_GRACE_SWEEP_BATCH_SIZE",
            DEFAULT_GRACE_SWEEP_BATCH_SIZE,
        )

    def run(self, now: datetime | None = None, *, dry_run: bool = False) -> GracePeriodSweepResult:
        now = now or timezone.now()
        result = self.send_notifications(now, dry_run=dry_run)
        expirations = self.expire_elapsed(now, dry_run=dry_run)
        result.expired = expirations.expired
        result.expiration_failures = expirations.expiration_failures
        return result

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def subscriptions_needing_notifications(self, now: datetime):
        if not self.schedule:
            return Subscription.objects.none()
        horizon = now + timedelta(days=max(self.schedule))
        return (
            Subscription.objects.filter(
                status__in=GRACE_PERIOD_STATUSES,
                ends_at__gt=now,
                ends_at__lte=horizon,
            )
            .select_related("tenant", "plan")
            .order_by("ends_at")
        )

    def subscriptions_with_elapsed_grace_period(self, now: datetime):
        return (
            Subscription.objects.filter(ends_at__lte=now)
            .exclude(status=SubscriptionStatus.EXPIRED)
            .order_by("ends_at")[: self.batch_size]
        )

    def already_notified(self, subscription: Subscription, day_number: int, now: datetime) -> bool:
        return subscription.events.filter(
            type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
            data__day_number=day_number,
            created__gte=now - timedelta(days=self.window_days),
        ).exists()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def send_notifications(
        self,
        now: datetime | None = None,
        *,
        dry_run: bool = False,
    ) -> GracePeriodSweepResult:
        now = now or timezone.now()
        result = GracePeriodSweepResult()

        # The batch bounds sends; already-notified rows do not count.
        for subscription in self.subscriptions_needing_notifications(now).iterator():
            if result.notified + result.notification_failures >= self.batch_size:
                break
            try:
                day_number = notification_day_for(
                    days_until(subscription.ends_at, now),
                    self.schedule,
                )
                if day_number is None or self.already_notified(subscription, day_number, now):
                    result.skipped += 1
                    continue

                if dry_run:
                    logger.info(
                        "Dry run: would send day %s notification for subscription %s",
                        day_number,
                        subscription.pk,
                    )
                    result.notified += 1
                    continue

                if not self.notifier(subscription, day_number):
                    logger.warning(
                        "Grace period notification not sent: subscription=%s day=%s",
                        subscription.pk,
                        day_number,
                    )
                    result.notification_failures += 1
                    continue

                self._mark_notified(subscription, day_number, now)
                result.notified += 1
            except Exception:
                logger.exception(
                    "Failed to process grace period notification for subscription %s",
                    subscription.pk,
                )
                result.notification_failures += 1

        logger.info(
            "Grace period notifications: notified=%s skipped=%s failed=%s",
            result.notified,
            result.skipped,
            result.notification_failures,
        )
        return result

    def expire_elapsed(
        self,
        now: datetime | None = None,
        *,
        dry_run: bool = False,
    ) -> GracePeriodSweepResult:
        now = now or timezone.now()
        result = GracePeriodSweepResult()

        for subscription in self.subscriptions_with_elapsed_grace_period(now):
            if dry_run:
                logger.info("Dry run: would expire subscription %s", subscription.pk)
                result.expired += 1
                continue
            try:
                with transaction.atomic():
                    outcome = self.state_machine.expire(
                        subscription,
                        reason="grace_period_elapsed",
                    )
            except Exception:
                logger.exception("Failed to expire subscription %s", subscription.pk)
                result.expiration_failures += 1
                continue
            if outcome.changed:
                result.expired += 1

        logger.info(
            "Grace period expirations: expired=%s failed=%s",
            result.expired,
            result.expiration_failures,
        )
        return result

    def _mark_notified(self, subscription: Subscription, day_number: int, now: datetime) -> None:
        with transaction.atomic():
            subscription.record_event(
                SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
                {
                    "day_number": day_number,
                    "days_remaining": days_until(subscription.ends_at, now),
                    "ends_at": subscription.ends_at.isoformat(),
                    "status": subscription.status,
                },
            )

    # ------------------------------------------------------------------
    # Per-subscription helpers
    # ------------------------------------------------------------------

    def status_for(self, subscription: Subscription, now: datetime | None = None) -> GracePeriodStatus:
        now = now or timezone.now()
        in_grace = (
            subscription.status in GRACE_PERIOD_STATUSES
            and subscription.ends_at is not None
            and subscription.ends_at > now
        )
        if not in_grace:
            return GracePeriodStatus(False, subscription.ends_at, None, None)
        remaining = days_until(subscription.ends_at, now)
        return GracePeriodStatus(
            True,
            subscription.ends_at,
            remaining,
            notification_day_for(remaining, self.schedule),
        )

    def extend(self, subscription: Subscription, additional_days: int, *, reason: str = "") -> Subscription:
        """Push a running grace period's end date back by ``additional_days``."""
        if additional_days <= 0:
            raise GracePeriodError("additional_days must be positive")

        with transaction.atomic():
            locked = Subscription.objects.select_for_update().get(pk=subscription.pk)
            if locked.status not in GRACE_PERIOD_STATUSES:
                raise GracePeriodError(
                    f"Subscription {locked.pk} is {locked.status}, not in a grace period",
                )
            if locked.ends_at is None:
                raise GracePeriodError(f"Subscription {locked.pk} has no end date")

            previous_end = locked.ends_at
            locked.ends_at = previous_end + timedelta(days=additional_days)
            locked.save(update_fields=["ends_at", "modified"])
            locked.record_event(
                SubscriptionEventType.UPDATED,
                {
                    "grace_period_extension": {
                        "additional_days": additional_days,
                        "reason": reason,
                        "previous_end_date": previous_end.isoformat(),
                        "new_end_date": locked.ends_at.isoformat(),
                    },
                },
            )

        logger.info(
            "Extended grace period for subscription %s by %s days (%s)",
            locked.pk,
            additional_days,
            reason,
        )
        subscription.refresh_from_db()
        return subscription
