"""
Email notifications for billing events.

This module handles sending email notifications when:
- A subscription is inside its grace period and a warning day is reached

Every sender returns True only when the mail backend accepted the message.
Callers use that to decide whether to record the notification as sent.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone
from django.utils.translation import gettext as _
from django.utils.translation import ngettext

if TYPE_CHECKING:
    from taskhive.billing.models import Subscription

logger = logging.getLogger(__name__)


def get_site_url() -> str:
    """
    Get the base site URL for building absolute URLs in emails.

    Uses SITE_URL setting if available, falls back to default.
    """
    return getattr(settings, "SITE_URL", "https://taskhive.io")


def send_grace_period_notification(subscription: Subscription, day_number: int) -> bool:
    """
    Warn a tenant that their subscription is about to expire.

    Args:
        subscription: A past due or canceled subscription with an ends_at.
        day_number: Days left before access is revoked, from the warning
            schedule (0 is the final warning, sent in the last 24 hours).

    Returns:
        True if email was sent successfully, False otherwise.
    """
    tenant = subscription.tenant
    recipients = tenant.billing_recipients()
    if not recipients:
        logger.warning(
            "Cannot send grace period notification: tenant %s has no billing email",
            tenant.pk,
        )
        return False

    # Real days left; can be fewer than day_number after a missed sweep.
    days_left = day_number
    if subscription.ends_at:
        remaining = (subscription.ends_at - timezone.now()).total_seconds()
        days_left = max(0, math.ceil(remaining / 86400))

    if days_left == 0:
        subject = _("Your TaskHive subscription ends today")
    else:
        subject = ngettext(
            "Your TaskHive subscription ends in %(days)d day",
            "Your TaskHive subscription ends in %(days)d days",
            days_left,
        ) % {"days": days_left}

    billing_url = f"{get_site_url()}/settings/billing/"
    ends_at = subscription.ends_at.strftime("%B %d, %Y") if subscription.ends_at else ""

    plain_message = _(
        """Hi there,

The %(plan_name)s subscription for %(tenant_name)s is %(status)s and will end
on %(ends_at)s. After that, your workspaces become read-only.

To keep access, update your payment details here:
%(billing_url)s

Thanks,
The TaskHive Team
"""
    ) % {
        "plan_name": subscription.plan.name,
        "tenant_name": tenant.name,
        "status": subscription.get_status_display().lower(),
        "ends_at": ends_at,
        "billing_url": billing_url,
    }

    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None)

    try:
        sent = send_mail(
            subject,
            plain_message,
            from_email,
            recipients,
        )
    except Exception:
        logger.exception(
            "Error sending grace period notification for subscription %s",
            subscription.pk,
        )
        return False

    if sent == 0:
        logger.error(
            "Email backend did not accept grace period notification for subscription %s",
            subscription.pk,
        )
        return False

    logger.info(
        "Sent day %s grace period notification for subscription %s to %s",
        day_number,
        subscription.pk,
        ", ".join(recipients),
    )
    return True
