"""
Billing models for the TaskHive subscription lifecycle.

Key design decisions:
- Subscription status only changes through billing.state_machine
- Subscriptions are never deleted; they end up EXPIRED
- SubscriptionEvent is an append-only log that doubles as the record of
  which grace period warnings were already sent
- ProcessedWebhookEvent is the idempotency ledger for provider webhooks

Relationship: Tenant ──1:N── Subscription ──N:1── Plan
                             Subscription ──1:N── SubscriptionEvent
"""

from django.db import models
from django.utils import timezone
from model_utils.models import TimeStampedModel

from taskhive.billing.constants import SubscriptionEventType
from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.constants import WebhookProvider


class Plan(models.Model):
    """
    Lookup table for priced tiers.

    Incoming subscription events are matched to a plan through
    ``external_price_id``. Webhook processing never modifies plans.
    """

    code = models.SlugField(
        max_length=50,
        unique=True,
        help_text="Stable plan identifier, e.g. 'starter'.",
    )
    name = models.CharField(max_length=100, help_text="Display name for the plan.")
    external_price_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Payment provider Price ID (price_xxx).",
    )
    monthly_price_cents = models.PositiveIntegerField(
        default=0,
        help_text="Monthly price in cents, for display only.",
    )
    display_order = models.PositiveSmallIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["display_order", "code"]

    def __str__(self):
        return self.name


class Subscription(TimeStampedModel):
    """
    A tenant's subscription to a plan, mirrored from the payment provider.

    ``ends_at`` is the authoritative grace period boundary once the
    subscription is past due or canceled. A null ``ends_at`` means the
    subscription is not currently time-bounded.

    Usage:
        from taskhive.billing.state_machine import SubscriptionStateMachine

        SubscriptionStateMachine().mark_past_due(subscription)
    """

    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,  # Never delete a plan with subscriptions
        related_name="subscriptions",
    )
    status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.TRIALING,
    )

    external_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Payment provider Subscription ID (sub_xxx).",
    )
    external_customer_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Payment provider Customer ID (cus_xxx).",
    )

    trial_ends_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the trial ends, as reported by the provider.",
    )
    ends_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the grace period, or the provider's end date.",
    )
    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the subscription was canceled.",
    )

    class Meta:
        indexes = [
            models.Index(
                fields=["status", "ends_at"],
                name="billing_sub_status_ends_idx",
            ),
        ]

    def __str__(self):
        return f"{self.tenant} - {self.plan} ({self.status})"

    @property
    def is_expired(self) -> bool:
        return self.status == SubscriptionStatus.EXPIRED

    @property
    def has_access(self) -> bool:
        """
        True while the tenant may keep using the product.

        Past due and canceled subscriptions keep access until ends_at.
        """
        if self.status in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE):
            return True
        if self.status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED):
            return self.ends_at is None or self.ends_at > timezone.now()
        return False

    def record_event(self, event_type: str, data: dict | None = None):
        """Append an entry to this subscription's event log."""
        return SubscriptionEvent.objects.create(
            subscription=self,
            type=event_type,
            data=data or {},
        )


class SubscriptionEvent(models.Model):
    """
    Append-only audit log of subscription lifecycle events.

    Rows are never updated. Grace period warnings are recorded here with
    type GRACE_PERIOD_NOTIFICATION and ``data["day_number"]``, which is
    what the sweep checks before sending the same warning again.
    """

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.CASCADE,
        related_name="events",
    )
    type = models.CharField(
        max_length=40,
        choices=SubscriptionEventType.choices,
    )
    data = models.JSONField(default=dict, blank=True)
    created = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created"]
        indexes = [
            models.Index(
                fields=["subscription", "type", "created"],
                name="billing_event_lookup_idx",
            ),
        ]

    def __str__(self):
        return f"{self.subscription_id}: {self.type} @ {self.created}"


class ProcessedWebhookEvent(models.Model):
    """
    Idempotency ledger for provider webhooks.

    A row exists for (provider, event_id) only once the event's effects have
    been committed. The processor checks for the row before doing any work,
    and the unique constraint settles the race when two workers pick up the
    same delivery at the same time.
    """

    event_id = models.CharField(max_length=255)
    provider = models.CharField(
        max_length=20,
        choices=WebhookProvider.choices,
        default=WebhookProvider.STRIPE,
    )
    event_type = models.CharField(max_length=100, blank=True)
    processed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "event_id"],
                name="uniq_processed_webhook_event",
            ),
        ]

    def __str__(self):
        return f"{self.provider}:{self.event_id}"


class FailedWebhookEvent(models.Model):
    """
    A webhook event that kept failing after every retry.

    Kept for manual review. Nothing reprocesses these automatically; see the
    replay_failed_webhook management command.
    """

    event_id = models.CharField(max_length=255, db_index=True)
    provider = models.CharField(
        max_length=20,
        choices=WebhookProvider.choices,
        default=WebhookProvider.STRIPE,
    )
    event_type = models.CharField(max_length=100, blank=True)
    payload = models.JSONField(default=dict)
    error_message = models.TextField(blank=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    failed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-failed_at"]

    def __str__(self):
        return f"{self.provider}:{self.event_id} ({self.event_type})"
