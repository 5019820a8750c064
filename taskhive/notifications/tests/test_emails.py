from datetime import timedelta
from unittest.mock import patch

import pytest
from django.core import mail
from django.utils import timezone

from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.tests.factories import SubscriptionFactory
from taskhive.notifications.emails import send_grace_period_notification
from taskhive.tenants.tests.factories import TenantFactory
from taskhive.tenants.tests.factories import UserFactory


@pytest.mark.django_db
class TestGracePeriodNotification:
    def test_sends_to_billing_email(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=timezone.now() + timedelta(days=3, hours=-1),
        )

        assert send_grace_period_notification(subscription, 3)

        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == [subscription.tenant.billing_email]
        assert message.subject == "Your TaskHive subscription ends in 3 days"
        assert "/settings/billing/" in message.body
        assert subscription.plan.name in message.body

    def test_final_day_subject(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.CANCELED,
            ends_at=timezone.now(),
        )

        send_grace_period_notification(subscription, 0)

        assert mail.outbox[0].subject == "Your TaskHive subscription ends today"

    def test_singular_subject(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE,
            ends_at=timezone.now() + timedelta(hours=12),
        )

        send_grace_period_notification(subscription, 1)

        assert mail.outbox[0].subject == "Your TaskHive subscription ends in 1 day"

    def test_falls_back_to_member_emails(self):
        member = UserFactory(email="owner@example.com")
        tenant = TenantFactory(billing_email="", members=[member])
        subscription = SubscriptionFactory(tenant=tenant, in_grace_period=True)

        assert send_grace_period_notification(subscription, 7)

        assert mail.outbox[0].to == ["owner@example.com"]

    def test_no_recipients_returns_false(self):
        tenant = TenantFactory(billing_email="")
        subscription = SubscriptionFactory(tenant=tenant, in_grace_period=True)

        assert not send_grace_period_notification(subscription, 7)
        assert len(mail.outbox) == 0

    def test_backend_error_returns_false(self):
        subscription = SubscriptionFactory(in_grace_period=True)

        with patch(
            "taskhive.notifications.emails.send_mail",
            side_effect=ConnectionRefusedError("smtp down"),
        ):
            assert not send_grace_period_notification(subscription, 7)

    def test_backend_rejecting_message_returns_false(self):
        subscription = SubscriptionFactory(in_grace_period=True)

        with patch("taskhive.notifications.emails.send_mail", return_value=0):
            assert not send_grace_period_notification(subscription, 7)
