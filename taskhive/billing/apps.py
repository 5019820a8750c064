from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Handles payment provider webhooks, the subscription state machine
    and the grace period sweep.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "taskhive.billing"
