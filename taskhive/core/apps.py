from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Shared infrastructure: the background job envelope and result store."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "taskhive.core"
