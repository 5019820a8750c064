"""
Payment provider webhook processing.

The provider delivers events at least once, so the same event id can arrive
more than once, and two deliveries can be picked up by two workers at the
same time. Processing is made exactly-once in effect with an idempotency key
pattern:

1. Pre-check: if ProcessedWebhookEvent already holds (provider, event id),
   return DUPLICATE without touching anything.
2. Run the handler and insert the ProcessedWebhookEvent row inside one
   transaction. Subscription rows are locked with select_for_update().
3. The unique constraint on (provider, event id) is the authoritative
   guard. If the insert finds a row committed by a concurrent worker, this
   transaction is rolled back and the delivery is reported as DUPLICATE.

Handler exceptions propagate to the job envelope (billing.tasks), which
retries and finally records a FailedWebhookEvent. Conditions that are not
errors (a one-off payment with no subscription, an event type we do not
handle) are logged and reported as IGNORED; they are still recorded as
processed so redeliveries stay cheap.

Event types form a closed enum. Adding a provider event means adding a
WebhookEventKind member and a case in WebhookProcessor._dispatch().

Usage:
    event = WebhookEvent.from_payload(payload)
    result = WebhookProcessor().process(event)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from enum import StrEnum
from typing import Any
from typing import assert_never

from django.db import transaction

from taskhive.billing.constants import SubscriptionEventType
from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.constants import WebhookProvider
from taskhive.billing.exceptions import MalformedWebhookEvent
from taskhive.billing.exceptions import PlanNotFound
from taskhive.billing.exceptions import SubscriptionNotFound
from taskhive.billing.exceptions import TenantNotFound
from taskhive.billing.exceptions import WebhookProcessingError
from taskhive.billing.models import Plan
from taskhive.billing.models import ProcessedWebhookEvent
from taskhive.billing.models import Subscription
from taskhive.billing.state_machine import SubscriptionStateMachine
from taskhive.tenants.models import Tenant

logger = logging.getLogger(__name__)


class WebhookEventKind(StrEnum):
    """Provider event types we know about. Anything else is UNKNOWN."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"
    PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_UPCOMING = "invoice.upcoming"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: str) -> WebhookEventKind:
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNKNOWN


class WebhookOutcome(StrEnum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class WebhookEvent:
    """A provider event envelope: ``{id, type, data}``."""

    id: str
    type: str
    data: dict[str, Any]
    provider: str = WebhookProvider.STRIPE

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        provider: str = WebhookProvider.STRIPE,
    ) -> WebhookEvent:
        """
        Build an event from a decoded envelope.

        Accepts both our own ``{id, type, data}`` shape and the provider's
        native ``{id, type, data: {object: {...}}}`` shape.
        """
        if not isinstance(payload, dict):
            raise MalformedWebhookEvent("Webhook payload must be an object")

        event_id = payload.get("id")
        event_type = payload.get("type")
        data = payload.get("data")
        if not event_id or not event_type:
            raise MalformedWebhookEvent("Webhook payload is missing id or type")
        if not isinstance(data, dict):
            raise MalformedWebhookEvent(f"Webhook {event_id} has no data object")

        if isinstance(data.get("object"), dict):
            data = data["object"]

        return cls(id=str(event_id), type=str(event_type), data=data, provider=provider)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "provider": self.provider,
        }


@dataclass
class WebhookResult:
    """What processing one event did."""

    event_id: str
    kind: WebhookEventKind
    outcome: WebhookOutcome
    subscription_id: int | None = None
    detail: str = ""
    changes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": str(self.kind),
            "outcome": str(self.outcome),
            "subscription_id": self.subscription_id,
            "detail": self.detail,
            "changes": self.changes,
        }


class _AlreadyProcessed(Exception):  # noqa: N818
    """Another worker committed this event first; roll ours back."""


def _from_timestamp(value: Any) -> datetime | None:
    """Convert a provider unix timestamp to an aware datetime."""
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _price_id(data: dict[str, Any]) -> str | None:
    try:
        return data["items"]["data"][0]["price"]["id"]
    except (KeyError, IndexError, TypeError):
        return None


class WebhookProcessor:
    """Applies provider events to subscriptions, at most once per event id."""

    def __init__(self, state_machine: SubscriptionStateMachine | None = None):
        self.state_machine = state_machine or SubscriptionStateMachine()

    def is_processed(self, event: WebhookEvent) -> bool:
        return ProcessedWebhookEvent.objects.filter(
            provider=event.provider,
            event_id=event.id,
        ).exists()

    def process(self, event: WebhookEvent) -> WebhookResult:
        kind = WebhookEventKind.from_type(event.type)

        if self.is_processed(event):
            logger.info(
                "Webhook event already processed: provider=%s event=%s",
                event.provider,
                event.id,
            )
            return WebhookResult(event.id, kind, WebhookOutcome.DUPLICATE)

        try:
            with transaction.atomic():
                result = self._dispatch(kind, event)
                self._mark_processed(event)
        except _AlreadyProcessed:
            logger.info(
                "Webhook event committed by a concurrent worker: provider=%s event=%s",
                event.provider,
                event.id,
            )
            return WebhookResult(event.id, kind, WebhookOutcome.DUPLICATE)

        logger.info(
            "Webhook event %s (%s): %s subscription=%s",
            event.id,
            event.type,
            result.outcome,
            result.subscription_id,
        )
        return result

    def _mark_processed(self, event: WebhookEvent) -> None:
        # get_or_create absorbs the IntegrityError from a racing insert and
        # hands back the other worker's row instead.
        _, created = ProcessedWebhookEvent.objects.get_or_create(
            provider=event.provider,
            event_id=event.id,
            defaults={"event_type": event.type},
        )
        if not created:
            raise _AlreadyProcessed(event.id)

    def _dispatch(self, kind: WebhookEventKind, event: WebhookEvent) -> WebhookResult:
        match kind:
            case WebhookEventKind.SUBSCRIPTION_CREATED:
                return self._subscription_created(event)
            case WebhookEventKind.SUBSCRIPTION_UPDATED:
                return self._subscription_updated(event)
            case WebhookEventKind.SUBSCRIPTION_DELETED:
                return self._subscription_deleted(event)
            case WebhookEventKind.TRIAL_WILL_END:
                return self._trial_will_end(event)
            case WebhookEventKind.PAYMENT_SUCCEEDED:
                return self._payment_succeeded(event)
            case WebhookEventKind.PAYMENT_FAILED:
                return self._payment_failed(event)
            case WebhookEventKind.INVOICE_UPCOMING:
                return self._invoice_upcoming(event)
            case WebhookEventKind.UNKNOWN:
                logger.warning(
                    "Ignoring unhandled webhook event type %s (event=%s)",
                    event.type,
                    event.id,
                )
                return WebhookResult(
                    event.id,
                    kind,
                    WebhookOutcome.IGNORED,
                    detail="Unhandled event type",
                )
            case _:
                assert_never(kind)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lock_subscription(self, external_id: str | None) -> Subscription | None:
        if not external_id:
            return None
        return (
            Subscription.objects.select_for_update()
            .filter(external_subscription_id=external_id)
            .first()
        )

    def _require_subscription(self, external_id: str | None) -> Subscription:
        if not external_id:
            raise WebhookProcessingError("Missing subscription ID")
        subscription = self._lock_subscription(external_id)
        if subscription is None:
            raise SubscriptionNotFound(f"Subscription not found: {external_id}")
        return subscription

    def _apply_status(
        self,
        subscription: Subscription,
        status: str | None,
        *,
        reason: str,
    ) -> dict[str, list[str]]:
        """Route a provider status through the state machine."""
        if not status or status == subscription.status:
            return {}
        if status not in SubscriptionStatus.values:
            logger.warning(
                "Ignoring unsupported provider status %s for subscription %s",
                status,
                subscription.pk,
            )
            return {}
        result = self.state_machine.transition(subscription, status, reason=reason)
        if not result.changed:
            return {}
        return {"status": [result.previous_status, result.status]}

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _subscription_created(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        external_id = data.get("id")
        customer_id = data.get("customer")
        status = data.get("status")
        if not external_id or not customer_id:
            raise WebhookProcessingError("Missing required subscription data")

        tenant = Tenant.objects.filter(external_customer_id=customer_id).first()
        if tenant is None:
            raise TenantNotFound(f"Tenant not found for customer: {customer_id}")

        price_id = _price_id(data)
        plan = Plan.objects.filter(external_price_id=price_id).first() if price_id else None
        if plan is None:
            raise PlanNotFound(f"Plan not found for price ID: {price_id}")

        trial_ends_at = _from_timestamp(data.get("trial_end"))
        subscription = self._lock_subscription(external_id)

        if subscription is None:
            if status not in SubscriptionStatus.values:
                raise WebhookProcessingError(
                    f"Unsupported status {status!r} for new subscription {external_id}",
                )
            subscription = Subscription.objects.create(
                tenant=tenant,
                plan=plan,
                external_subscription_id=external_id,
                external_customer_id=customer_id,
                status=status,
                trial_ends_at=trial_ends_at,
            )
            subscription.record_event(
                SubscriptionEventType.CREATED,
                {
                    "external_subscription_id": external_id,
                    "status": status,
                    "trial_ends_at": trial_ends_at.isoformat() if trial_ends_at else None,
                    "event_id": event.id,
                },
            )
            return WebhookResult(
                event.id,
                WebhookEventKind.SUBSCRIPTION_CREATED,
                WebhookOutcome.PROCESSED,
                subscription_id=subscription.pk,
                detail="created",
            )

        # Redelivered or out-of-order create for a subscription we already know.
        changes = self._apply_status(subscription, status, reason="subscription_created")
        if subscription.trial_ends_at != trial_ends_at:
            changes["trial_ends_at"] = [
                subscription.trial_ends_at.isoformat() if subscription.trial_ends_at else None,
                trial_ends_at.isoformat() if trial_ends_at else None,
            ]
            subscription.trial_ends_at = trial_ends_at
            subscription.save(update_fields=["trial_ends_at", "modified"])

        if changes:
            subscription.record_event(
                SubscriptionEventType.UPDATED,
                {"changes": changes, "event_id": event.id},
            )
        return WebhookResult(
            event.id,
            WebhookEventKind.SUBSCRIPTION_CREATED,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="updated",
            changes=changes,
        )

    def _subscription_updated(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        subscription = self._require_subscription(data.get("id"))
        previous_status = subscription.status

        changes = self._apply_status(
            subscription,
            data.get("status"),
            reason="subscription_updated",
        )

        fields: dict[str, datetime | None] = {}
        if "trial_end" in data:
            fields["trial_ends_at"] = _from_timestamp(data.get("trial_end"))
        if data.get("canceled_at"):
            fields["canceled_at"] = _from_timestamp(data["canceled_at"])
        ends_at = _from_timestamp(data.get("ended_at") or data.get("cancel_at"))
        if ends_at is not None:
            fields["ends_at"] = ends_at

        changed_fields = [
            name for name, value in fields.items() if getattr(subscription, name) != value
        ]
        for name in changed_fields:
            old = getattr(subscription, name)
            new = fields[name]
            changes[name] = [
                old.isoformat() if old else None,
                new.isoformat() if new else None,
            ]
            setattr(subscription, name, new)
        if changed_fields:
            subscription.save(update_fields=[*changed_fields, "modified"])

        if changes:
            subscription.record_event(
                SubscriptionEventType.UPDATED,
                {
                    "previous_status": previous_status,
                    "new_status": subscription.status,
                    "changes": changes,
                    "event_id": event.id,
                },
            )
        return WebhookResult(
            event.id,
            WebhookEventKind.SUBSCRIPTION_UPDATED,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="updated" if changes else "unchanged",
            changes=changes,
        )

    def _subscription_deleted(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        subscription = self._require_subscription(data.get("id"))
        ended_at = _from_timestamp(data.get("ended_at"))

        result = self.state_machine.expire(
            subscription,
            ends_at=ended_at,
            reason="subscription_deleted",
        )
        if not result.changed and ended_at and subscription.ends_at != ended_at:
            subscription.ends_at = ended_at
            subscription.save(update_fields=["ends_at", "modified"])

        return WebhookResult(
            event.id,
            WebhookEventKind.SUBSCRIPTION_DELETED,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="expired",
        )

    def _trial_will_end(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        subscription = self._require_subscription(data.get("id"))
        trial_ends_at = _from_timestamp(data.get("trial_end"))

        subscription.record_event(
            SubscriptionEventType.TRIAL_WILL_END,
            {
                "trial_ends_at": trial_ends_at.isoformat() if trial_ends_at else None,
                "event_id": event.id,
            },
        )
        return WebhookResult(
            event.id,
            WebhookEventKind.TRIAL_WILL_END,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="trial_ending",
        )

    def _payment_succeeded(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        external_id = data.get("subscription")
        if not external_id:
            logger.warning(
                "invoice.payment_succeeded without a subscription, ignoring: event=%s",
                event.id,
            )
            return WebhookResult(
                event.id,
                WebhookEventKind.PAYMENT_SUCCEEDED,
                WebhookOutcome.IGNORED,
                detail="Not a subscription payment",
            )

        subscription = self._require_subscription(external_id)
        changes = {}
        if subscription.status == SubscriptionStatus.PAST_DUE:
            result = self.state_machine.activate(subscription, reason="payment_succeeded")
            if result.changed:
                changes["status"] = [result.previous_status, result.status]

        subscription.record_event(
            SubscriptionEventType.PAYMENT_SUCCEEDED,
            {
                "amount_paid": data.get("amount_paid", 0),
                "currency": data.get("currency", "usd"),
                "invoice_id": data.get("id"),
                "event_id": event.id,
            },
        )
        return WebhookResult(
            event.id,
            WebhookEventKind.PAYMENT_SUCCEEDED,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="payment_processed",
            changes=changes,
        )

    def _payment_failed(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        external_id = data.get("subscription")
        if not external_id:
            logger.warning(
                "invoice.payment_failed without a subscription, ignoring: event=%s",
                event.id,
            )
            return WebhookResult(
                event.id,
                WebhookEventKind.PAYMENT_FAILED,
                WebhookOutcome.IGNORED,
                detail="Not a subscription payment",
            )

        # A failed payment for a subscription we cannot find is an error, not
        # a no-op: dropping it would silently skip dunning.
        subscription = self._require_subscription(external_id)
        changes = {}
        if subscription.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            result = self.state_machine.mark_past_due(subscription, reason="payment_failed")
            if result.changed:
                changes["status"] = [result.previous_status, result.status]

        subscription.record_event(
            SubscriptionEventType.PAYMENT_FAILED,
            {
                "amount_due": data.get("amount_due", 0),
                "currency": data.get("currency", "usd"),
                "attempt_count": data.get("attempt_count", 1),
                "invoice_id": data.get("id"),
                "next_payment_attempt": data.get("next_payment_attempt"),
                "event_id": event.id,
            },
        )
        return WebhookResult(
            event.id,
            WebhookEventKind.PAYMENT_FAILED,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="payment_failed",
            changes=changes,
        )

    def _invoice_upcoming(self, event: WebhookEvent) -> WebhookResult:
        data = event.data
        subscription = self._lock_subscription(data.get("subscription"))
        if subscription is None:
            logger.warning(
                "invoice.upcoming for unknown subscription %s, ignoring: event=%s",
                data.get("subscription"),
                event.id,
            )
            return WebhookResult(
                event.id,
                WebhookEventKind.INVOICE_UPCOMING,
                WebhookOutcome.IGNORED,
                detail="Subscription not found",
            )

        subscription.record_event(
            SubscriptionEventType.INVOICE_UPCOMING,
            {
                "amount_due": data.get("amount_due", 0),
                "currency": data.get("currency", "usd"),
                "next_payment_attempt": data.get("next_payment_attempt"),
                "event_id": event.id,
            },
        )
        return WebhookResult(
            event.id,
            WebhookEventKind.INVOICE_UPCOMING,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.pk,
            detail="invoice_upcoming",
        )
