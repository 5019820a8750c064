from django.apps import AppConfig


class TenantsConfig(AppConfig):
    """
    Django app configuration for tenants.

    A tenant is the customer account that owns workspaces and holds the
    billing subscription.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "taskhive.tenants"
