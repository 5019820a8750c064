from django.apps import AppConfig


class BoardsConfig(AppConfig):
    """
    Django app configuration for workspaces, boards and tasks.

    Only the models and the bulk task operation job live here; CRUD views
    belong to the product API.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "taskhive.boards"
