"""
Exceptions raised while processing billing events.

Anything deriving from WebhookProcessingError is a permanent data problem:
the job envelope retries it a bounded number of times and then records the
event as a FailedWebhookEvent for an operator to look at.
"""


class BillingError(Exception):
    """Base exception for billing errors."""


class MalformedWebhookEvent(BillingError):
    """The webhook envelope is missing its id, type or data."""


class WebhookProcessingError(BillingError):
    """A webhook event could not be applied."""


class TenantNotFound(WebhookProcessingError):
    """No tenant matches the event's external customer id."""


class PlanNotFound(WebhookProcessingError):
    """No plan matches the event's external price id."""


class SubscriptionNotFound(WebhookProcessingError):
    """No subscription matches the event's external subscription id."""


class GracePeriodError(BillingError):
    """A grace period operation does not apply to this subscription."""
