"""
Django admin configuration for billing models.

Provides admin interfaces for:
- Plan: View/edit priced tiers and their provider price IDs
- Subscription: Inspect tenant subscriptions and their event log
- ProcessedWebhookEvent: Browse the webhook idempotency ledger
- FailedWebhookEvent: Review poison events before replaying them

Subscription status is read-only here; it only changes through the state
machine.
"""

from django.contrib import admin

from taskhive.billing.models import FailedWebhookEvent
from taskhive.billing.models import Plan
from taskhive.billing.models import ProcessedWebhookEvent
from taskhive.billing.models import Subscription
from taskhive.billing.models import SubscriptionEvent


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Admin for pricing plans."""

    list_display = [
        "code",
        "name",
        "monthly_price_cents",
        "external_price_id",
        "display_order",
        "is_active",
    ]
    list_editable = ["external_price_id", "display_order"]
    ordering = ["display_order"]
    search_fields = ["code", "name", "external_price_id"]


class SubscriptionEventInline(admin.TabularInline):
    model = SubscriptionEvent
    extra = 0
    can_delete = False
    fields = ["created", "type", "data"]
    readonly_fields = ["created", "type", "data"]
    ordering = ["-created"]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """Admin for tenant subscriptions."""

    list_display = [
        "tenant",
        "plan",
        "status",
        "trial_ends_at",
        "ends_at",
        "external_subscription_id",
    ]
    list_filter = ["status", "plan"]
    search_fields = [
        "tenant__name",
        "external_customer_id",
        "external_subscription_id",
    ]
    raw_id_fields = ["tenant"]
    readonly_fields = ["status", "created", "modified"]
    inlines = [SubscriptionEventInline]

    fieldsets = [
        (None, {"fields": ["tenant", "plan", "status"]}),
        (
            "Provider",
            {"fields": ["external_subscription_id", "external_customer_id"]},
        ),
        ("Dates", {"fields": ["trial_ends_at", "ends_at", "canceled_at"]}),
        ("Timestamps", {"fields": ["created", "modified"]}),
    ]


@admin.register(SubscriptionEvent)
class SubscriptionEventAdmin(admin.ModelAdmin):
    """Read-only view of the subscription event log."""

    list_display = ["subscription", "type", "created"]
    list_filter = ["type"]
    search_fields = ["subscription__external_subscription_id"]
    raw_id_fields = ["subscription"]
    readonly_fields = ["subscription", "type", "data", "created"]

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = ["event_id", "provider", "event_type", "processed_at"]
    list_filter = ["provider", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = ["event_id", "provider", "event_type", "processed_at"]


@admin.register(FailedWebhookEvent)
class FailedWebhookEventAdmin(admin.ModelAdmin):
    """Poison events awaiting manual review."""

    list_display = ["event_id", "provider", "event_type", "attempts", "failed_at"]
    list_filter = ["provider", "event_type"]
    search_fields = ["event_id", "error_message"]
    readonly_fields = [
        "event_id",
        "provider",
        "event_type",
        "payload",
        "error_message",
        "attempts",
        "failed_at",
    ]
