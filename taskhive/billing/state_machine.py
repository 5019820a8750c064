"""
Subscription state machine.

Every change to ``Subscription.status`` goes through this module. The
transition table below is the single source of truth for which moves are
allowed:

    trialing → active | past_due | canceled | expired
    active   → past_due | canceled | expired
    past_due → active | canceled | expired
    canceled → expired
    expired  → (terminal)

Nothing re-enters ``trialing``.

An invalid transition is never an error. The operation logs a warning and
reports ``changed=False`` so a webhook handler can carry on applying the
other fields of the same event.

Each operation locks the subscription row with ``select_for_update()`` and
checks the transition against the status it just read, so two workers
handling events for the same subscription cannot interleave an invalid move.

Usage:
    machine = SubscriptionStateMachine()
    result = machine.mark_past_due(subscription)
    if result.changed:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from taskhive.billing.constants import DEFAULT_GRACE_PERIOD_DAYS
from taskhive.billing.constants import SubscriptionEventType
from taskhive.billing.constants import SubscriptionStatus
from taskhive.billing.models import Subscription

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    SubscriptionStatus.TRIALING: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        },
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        },
    ),
    SubscriptionStatus.PAST_DUE: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        },
    ),
    SubscriptionStatus.CANCELED: frozenset({SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.EXPIRED: frozenset(),
}


def is_valid_transition(from_status: str, to_status: str) -> bool:
    """Return True if the table allows moving from ``from_status`` to ``to_status``."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def valid_transitions_from(status: str) -> frozenset[str]:
    return VALID_TRANSITIONS.get(status, frozenset())


def can_transition_to(subscription: Subscription, status: str) -> bool:
    return is_valid_transition(subscription.status, status)


def _grace_period_days() -> int:
    return getattr(settings, "BILLING_GRACE_PERIOD_DAYS", DEFAULT_GRACE_PERIOD_DAYS)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a state machine operation."""

    previous_status: str
    status: str
    changed: bool


# Sets status-specific fields on the locked row and returns the names of the
# fields it touched.
SideEffects = Callable[[Subscription, datetime], list[str]]


class SubscriptionStateMachine:
    """
    Guarded status mutations for subscriptions.

    All operations are idempotent: asking for the status the subscription
    already has is a no-op, so ``expire()`` on an expired subscription is
    safe to call again.
    """

    def activate(
        self,
        subscription: Subscription,
        *,
        reason: str = "payment_succeeded",
    ) -> TransitionResult:
        """
        Move to ACTIVE.

        Leaving a trial clears ``trial_ends_at``; recovering from PAST_DUE
        closes the grace period by clearing ``ends_at``.
        """

        def clear_bounds(locked: Subscription, now: datetime) -> list[str]:
            if locked.status == SubscriptionStatus.PAST_DUE:
                locked.ends_at = None
                return ["ends_at"]
            if locked.status == SubscriptionStatus.TRIALING:
                locked.trial_ends_at = None
                return ["trial_ends_at"]
            return []

        return self._apply(
            subscription,
            SubscriptionStatus.ACTIVE,
            reason=reason,
            side_effects=clear_bounds,
        )

    def mark_past_due(
        self,
        subscription: Subscription,
        *,
        reason: str = "payment_failed",
    ) -> TransitionResult:
        """Move to PAST_DUE and open a grace period if none is running."""

        def open_grace_period(locked: Subscription, now: datetime) -> list[str]:
            if locked.ends_at is None:
                locked.ends_at = now + timedelta(days=_grace_period_days())
            return ["ends_at"]

        return self._apply(
            subscription,
            SubscriptionStatus.PAST_DUE,
            reason=reason,
            side_effects=open_grace_period,
        )

    def cancel(
        self,
        subscription: Subscription,
        *,
        ends_at: datetime | None = None,
        reason: str = "canceled",
    ) -> TransitionResult:
        """
        Cancel the subscription and open its grace period.

        ``ends_at`` defaults to the existing end date, or to now plus
        BILLING_GRACE_PERIOD_DAYS when the subscription has none.
        """

        def set_cancel_fields(locked: Subscription, now: datetime) -> list[str]:
            locked.canceled_at = locked.canceled_at or now
            locked.ends_at = (
                ends_at
                or locked.ends_at
                or now + timedelta(days=_grace_period_days())
            )
            return ["canceled_at", "ends_at"]

        return self._apply(
            subscription,
            SubscriptionStatus.CANCELED,
            reason=reason,
            event_type=SubscriptionEventType.CANCELED,
            side_effects=set_cancel_fields,
        )

    def expire(
        self,
        subscription: Subscription,
        *,
        ends_at: datetime | None = None,
        reason: str = "expired",
    ) -> TransitionResult:
        """
        Move the subscription to the terminal EXPIRED state.

        An existing ``ends_at`` is kept unless a new one is passed in; a
        subscription with no end date gets the current time.
        """

        def set_end_date(locked: Subscription, now: datetime) -> list[str]:
            if ends_at is not None:
                locked.ends_at = ends_at
            elif locked.ends_at is None:
                locked.ends_at = now
            return ["ends_at"]

        return self._apply(
            subscription,
            SubscriptionStatus.EXPIRED,
            reason=reason,
            event_type=SubscriptionEventType.EXPIRED,
            side_effects=set_end_date,
        )

    def transition(
        self,
        subscription: Subscription,
        new_status: str,
        *,
        reason: str = "",
    ) -> TransitionResult:
        """Move to an arbitrary status, subject to the transition table."""
        match new_status:
            case SubscriptionStatus.ACTIVE:
                return self.activate(subscription, reason=reason or "activated")
            case SubscriptionStatus.PAST_DUE:
                return self.mark_past_due(subscription, reason=reason or "past_due")
            case SubscriptionStatus.CANCELED:
                return self.cancel(subscription, reason=reason or "canceled")
            case SubscriptionStatus.EXPIRED:
                return self.expire(subscription, reason=reason or "expired")
            case _:
                return self._apply(subscription, new_status, reason=reason)

    # ---------------------------------------------------------------------

    def _apply(
        self,
        subscription: Subscription,
        new_status: str,
        *,
        reason: str,
        event_type: str = SubscriptionEventType.UPDATED,
        side_effects: SideEffects | None = None,
    ) -> TransitionResult:
        with transaction.atomic():
            locked = Subscription.objects.select_for_update().get(pk=subscription.pk)
            previous_status = locked.status

            if previous_status == new_status:
                subscription.refresh_from_db()
                return TransitionResult(previous_status, previous_status, changed=False)

            if not is_valid_transition(previous_status, new_status):
                logger.warning(
                    "Invalid subscription status transition skipped: "
                    "subscription=%s from=%s to=%s reason=%s",
                    locked.pk,
                    previous_status,
                    new_status,
                    reason,
                )
                subscription.refresh_from_db()
                return TransitionResult(previous_status, previous_status, changed=False)

            # Side effects see the row as it was before the move.
            now = timezone.now()
            update_fields = ["status", "modified"]
            if side_effects is not None:
                update_fields += side_effects(locked, now)
            locked.status = new_status
            locked.save(update_fields=update_fields)

            locked.record_event(
                event_type,
                {
                    "previous_status": previous_status,
                    "new_status": new_status,
                    "reason": reason,
                    "ends_at": locked.ends_at.isoformat() if locked.ends_at else None,
                },
            )

        subscription.refresh_from_db()
        logger.info(
            "Subscription status changed: subscription=%s %s -> %s (%s)",
            subscription.pk,
            previous_status,
            new_status,
            reason,
        )
        return TransitionResult(previous_status, new_status, changed=True)
