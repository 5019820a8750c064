from django.contrib import admin

from taskhive.boards.models import Board
from taskhive.boards.models import Label
from taskhive.boards.models import Task
from taskhive.boards.models import Workspace


@admin.register(Workspace)
class WorkspaceAdmin(admin.ModelAdmin):
    list_display = ["name", "tenant", "created"]
    list_filter = ["tenant"]
    search_fields = ["name", "tenant__name"]


@admin.register(Board)
class BoardAdmin(admin.ModelAdmin):
    list_display = ["name", "workspace", "tenant", "created"]
    list_filter = ["tenant"]
    search_fields = ["name", "workspace__name"]


@admin.register(Label)
class LabelAdmin(admin.ModelAdmin):
    list_display = ["name", "color", "tenant"]
    list_filter = ["tenant"]
    search_fields = ["name"]


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = [
        "title",
        "board",
        "status",
        "priority",
        "assignee",
        "due_date",
        "archived_at",
    ]
    list_filter = ["status", "priority", "tenant"]
    search_fields = ["title", "description"]
    raw_id_fields = ["assignee", "board", "workspace"]
    filter_horizontal = ["labels"]
    readonly_fields = ["completed_at", "archived_at", "created", "modified"]
