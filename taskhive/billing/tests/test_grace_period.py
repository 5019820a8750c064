"""
Tests for the grace period sweep.

The notification day mapping is a pure function and is tested on its own;
the sweep tests inject a fake notifier so no mail is involved.
"""

from datetime import timedelta
from unittest.mock import Mock
from unittest.mock import patch

import pytest
from django.core import mail
from django.test import TestCase
from django.utils import timezone

from taskhive.billing.constants import SubscriptionEventType
from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.exceptions import GracePeriodError
from taskhive.billing.grace_period import GracePeriodService
from taskhive.billing.grace_period import days_until
from taskhive.billing.grace_period import notification_day_for
from taskhive.billing.grace_period import notification_schedule
from taskhive.billing.tests.factories import SubscriptionEventFactory
from taskhive.billing.tests.factories import SubscriptionFactory

SCHEDULE = (7, 3, 1, 0)


class NotificationDayTests(TestCase):
    def test_exact_schedule_days_map_to_themselves(self):
        for day in SCHEDULE:
            self.assertEqual(notification_day_for(day, SCHEDULE), day)

    def test_days_between_map_to_covering_day(self):
        self.assertEqual(notification_day_for(2, SCHEDULE), 3)
        self.assertEqual(notification_day_for(5, SCHEDULE), 7)
        self.assertEqual(notification_day_for(6, SCHEDULE), 7)

    def test_out_of_range(self):
        self.assertIsNone(notification_day_for(8, SCHEDULE))
        self.assertIsNone(notification_day_for(-1, SCHEDULE))
        self.assertIsNone(notification_day_for(3, ()))

    def test_schedule_order_does_not_matter(self):
        self.assertEqual(notification_day_for(2, (0, 1, 3, 7)), 3)

    def test_days_until_counts_whole_days(self):
        now = timezone.now()
        self.assertEqual(days_until(now + timedelta(days=1, hours=20), now), 1)
        self.assertEqual(days_until(now + timedelta(days=2), now), 2)
        self.assertEqual(days_until(now + timedelta(hours=23), now), 0)
        self.assertEqual(days_until(now, now), 0)

    def test_schedule_from_settings_is_sorted_descending(self):
        with self.settings(BILLING_GRACE_NOTIFICATION_DAYS=[1, 7, 0, 3]):
            self.assertEqual(notification_schedule(), (7, 3, 1, 0))


@pytest.mark.django_db
class TestNotifications:
    def make_service(self, notifier=None, **kwargs):
        return GracePeriodService(
            notifier=notifier or Mock(return_value=True),
            schedule=SCHEDULE,
            window_days=8,
            **kwargs,
        )

    def test_two_days_out_sends_day_three_once(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=2),
        )
        notifier = Mock(return_value=True)
        service = self.make_service(notifier)

        first = service.send_notifications(now)
        second = service.send_notifications(now)

        notifier.assert_called_once_with(subscription, 3)
        assert first.notified == 1
        assert second.notified == 0
        assert second.skipped == 1
        marker = subscription.events.get(type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION)
        assert marker.data["day_number"] == 3
        assert marker.data["days_remaining"] == 2

    def test_old_marker_outside_window_does_not_block(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.CANCELED,
            ends_at=now + timedelta(days=1),
        )
        SubscriptionEventFactory(
            subscription=subscription,
            type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
            data={"day_number": 1},
            created=now - timedelta(days=20),
        )
        notifier = Mock(return_value=True)

        self.make_service(notifier).send_notifications(now)

        notifier.assert_called_once_with(subscription, 1)

    def test_marker_for_other_day_does_not_block(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=1),
        )
        SubscriptionEventFactory(
            subscription=subscription,
            type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
            data={"day_number": 3},
            created=now - timedelta(days=2),
        )
        notifier = Mock(return_value=True)

        self.make_service(notifier).send_notifications(now)

        notifier.assert_called_once_with(subscription, 1)

    def test_failed_send_is_not_marked(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=3),
        )

        result = self.make_service(Mock(return_value=False)).send_notifications(now)

        assert result.notification_failures == 1
        assert not subscription.events.filter(
            type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
        ).exists()

    def test_one_failure_does_not_block_the_rest(self):
        now = timezone.now()
        broken = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=1),
        )
        healthy = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=2),
        )

        def notifier(subscription, day_number):
            if subscription.pk == broken.pk:
                raise RuntimeError("smtp down")
            return True

        result = self.make_service(notifier).send_notifications(now)

        assert result.notified == 1
        assert result.notification_failures == 1
        assert healthy.events.filter(
            type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
        ).exists()

    def test_daily_sweeps_send_every_scheduled_warning(self):
        start = timezone.now()
        SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=start + timedelta(days=7, hours=-2),
        )
        notifier = Mock(return_value=True)
        service = self.make_service(notifier)

        for day in range(9):
            service.send_notifications(start + timedelta(days=day))

        sent = [call.args[1] for call in notifier.call_args_list]
        assert sent == [7, 3, 1, 0]

    def test_notified_rows_do_not_use_up_the_batch(self):
        now = timezone.now()
        notified = [
            SubscriptionFactory(
                status=SubscriptionStatus.PAST_DUE,
                ends_at=now + timedelta(days=2),
            )
            for _ in range(2)
        ]
        for subscription in notified:
            SubscriptionEventFactory(
                subscription=subscription,
                type=SubscriptionEventType.GRACE_PERIOD_NOTIFICATION,
                data={"day_number": 3},
            )
        waiting = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=5),
        )
        notifier = Mock(return_value=True)

        result = self.make_service(notifier, batch_size=1).send_notifications(now)

        notifier.assert_called_once_with(waiting, 7)
        assert result.skipped == 2
        assert result.notified == 1

    def test_ignores_subscriptions_outside_the_horizon(self):
        now = timezone.now()
        SubscriptionFactory(status=SubscriptionStatus.PAST_DUE, ends_at=now + timedelta(days=20))
        SubscriptionFactory(status=SubscriptionStatus.ACTIVE, ends_at=now + timedelta(days=2))
        SubscriptionFactory(status=SubscriptionStatus.PAST_DUE, ends_at=None)
        notifier = Mock(return_value=True)

        result = self.make_service(notifier).send_notifications(now)

        notifier.assert_not_called()
        assert result.notified == 0

    def test_dry_run_sends_nothing(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=7),
        )
        notifier = Mock(return_value=True)

        result = self.make_service(notifier).send_notifications(now, dry_run=True)

        assert result.notified == 1
        notifier.assert_not_called()
        assert not subscription.events.exists()

    def test_default_notifier_sends_email(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=timezone.now() + timedelta(days=3, hours=-1),
        )

        result = GracePeriodService(schedule=SCHEDULE).send_notifications()

        assert result.notified == 1
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == [subscription.tenant.billing_email]


@pytest.mark.django_db
class TestExpirations:
    def make_service(self, **kwargs):
        return GracePeriodService(notifier=Mock(return_value=True), schedule=SCHEDULE, **kwargs)

    def test_elapsed_grace_period_expires_and_keeps_end_date(self):
        now = timezone.now()
        ends_at = now - timedelta(hours=1)
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED, ends_at=ends_at)

        result = self.make_service().expire_elapsed(now)

        subscription.refresh_from_db()
        assert result.expired == 1
        assert subscription.status == SubscriptionStatus.EXPIRED
        assert subscription.ends_at == ends_at
        assert subscription.events.filter(type=SubscriptionEventType.EXPIRED).exists()

    def test_running_grace_period_is_left_alone(self):
        now = timezone.now()
        subscription = SubscriptionFactory(in_grace_period=True)

        result = self.make_service().expire_elapsed(now)

        subscription.refresh_from_db()
        assert result.expired == 0
        assert subscription.status == SubscriptionStatus.PAST_DUE

    def test_one_failure_does_not_block_the_rest(self):
        now = timezone.now()
        first = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now - timedelta(days=2),
        )
        second = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now - timedelta(days=1),
        )
        machine = Mock()
        original = GracePeriodService().state_machine

        def expire(subscription, **kwargs):
            if subscription.pk == first.pk:
                raise RuntimeError("lock timeout")
            return original.expire(subscription, **kwargs)

        machine.expire.side_effect = expire

        result = self.make_service(state_machine=machine).expire_elapsed(now)

        first.refresh_from_db()
        second.refresh_from_db()
        assert result.expired == 1
        assert result.expiration_failures == 1
        assert first.status == SubscriptionStatus.PAST_DUE
        assert second.status == SubscriptionStatus.EXPIRED

    def test_dry_run_expires_nothing(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=timezone.now() - timedelta(days=1),
        )

        result = self.make_service().expire_elapsed(dry_run=True)

        subscription.refresh_from_db()
        assert result.expired == 1
        assert subscription.status == SubscriptionStatus.PAST_DUE

    def test_run_does_both_passes(self):
        now = timezone.now()
        SubscriptionFactory(status=SubscriptionStatus.PAST_DUE, ends_at=now + timedelta(days=1))
        SubscriptionFactory(status=SubscriptionStatus.CANCELED, ends_at=now - timedelta(days=1))

        result = self.make_service().run(now)

        assert result.notified == 1
        assert result.expired == 1

    def test_sweep_respects_batch_size(self):
        now = timezone.now()
        for _ in range(3):
            SubscriptionFactory(
                status=SubscriptionStatus.PAST_DUE,
                ends_at=now - timedelta(days=1),
            )

        result = self.make_service(batch_size=2).expire_elapsed(now)

        assert result.expired == 2


@pytest.mark.django_db
class TestGracePeriodHelpers:
    def test_status_for_running_grace_period(self):
        now = timezone.now()
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=now + timedelta(days=2),
        )

        status = GracePeriodService(schedule=SCHEDULE).status_for(subscription, now)

        assert status.in_grace_period
        assert status.days_remaining == 2
        assert status.next_notification_day == 3

    def test_status_for_active_subscription(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.ACTIVE)

        status = GracePeriodService(schedule=SCHEDULE).status_for(subscription)

        assert not status.in_grace_period
        assert status.days_remaining is None

    def test_extend_moves_end_date(self):
        subscription = SubscriptionFactory(in_grace_period=True)
        previous_end = subscription.ends_at

        GracePeriodService().extend(subscription, 5, reason="support request")

        assert subscription.ends_at == previous_end + timedelta(days=5)
        event = subscription.events.get(type=SubscriptionEventType.UPDATED)
        assert event.data["grace_period_extension"]["reason"] == "support request"

    def test_extend_rejects_active_subscription(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.ACTIVE)
        with pytest.raises(GracePeriodError):
            GracePeriodService().extend(subscription, 5)

    def test_extend_rejects_non_positive_days(self):
        subscription = SubscriptionFactory(in_grace_period=True)
        with pytest.raises(GracePeriodError):
            GracePeriodService().extend(subscription, 0)


def test_default_notifier_is_send_grace_period_notification():
    with patch("taskhive.billing.grace_period.send_grace_period_notification") as notifier:
        service = GracePeriodService(schedule=SCHEDULE)
    assert service.notifier is notifier
