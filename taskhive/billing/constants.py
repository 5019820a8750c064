"""
Billing constants for the subscription lifecycle.

These enums define the subscription states, the audit event types written
to the SubscriptionEvent log, and the webhook providers we accept events
from. Status values match the payment provider's own spelling so incoming
payloads can be compared without translation.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class SubscriptionStatus(models.TextChoices):
    """
    Subscription lifecycle states.

    Typical flow:
        TRIALING → ACTIVE (first successful payment)
        ACTIVE → PAST_DUE (payment failed) → ACTIVE (payment recovered)
        PAST_DUE → CANCELED → EXPIRED (grace period elapsed)

    EXPIRED is terminal. See billing.state_machine for the full table.
    """

    TRIALING = "trialing", _("Trialing")
    ACTIVE = "active", _("Active")
    PAST_DUE = "past_due", _("Past Due")
    CANCELED = "canceled", _("Canceled")
    EXPIRED = "expired", _("Expired")


class SubscriptionEventType(models.TextChoices):
    """Entry types in the append-only SubscriptionEvent log."""

    CREATED = "created", _("Created")
    UPDATED = "updated", _("Updated")
    CANCELED = "canceled", _("Canceled")
    EXPIRED = "expired", _("Expired")
    PAYMENT_SUCCEEDED = "payment_succeeded", _("Payment Succeeded")
    PAYMENT_FAILED = "payment_failed", _("Payment Failed")
    TRIAL_WILL_END = "trial_will_end", _("Trial Will End")
    INVOICE_UPCOMING = "invoice_upcoming", _("Invoice Upcoming")
    GRACE_PERIOD_NOTIFICATION = (
        "grace_period_notification",
        _("Grace Period Notification"),
    )


class WebhookProvider(models.TextChoices):
    STRIPE = "stripe", _("Stripe")


# Subscriptions in these states are inside a grace period while ends_at is
# in the future.
GRACE_PERIOD_STATUSES = (
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.CANCELED,
)

# Defaults for the settings of the same name (see config/settings/base.py).
DEFAULT_GRACE_PERIOD_DAYS = 7
DEFAULT_GRACE_NOTIFICATION_DAYS = (7, 3, 1, 0)
DEFAULT_GRACE_NOTIFICATION_WINDOW_DAYS = 8
DEFAULT_GRACE_SWEEP_BATCH_SIZE = 500
