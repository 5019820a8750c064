"""
Workspace, board and task models.

Relationship: Tenant ──1:N── Workspace ──1:N── Board ──1:N── Task
              Task ──N:M── Label

Every row carries its tenant so queries can be scoped without joins.
"""

from django.conf import settings
from django.db import models
from django.utils import timezone
from model_utils.models import TimeStampedModel

from taskhive.boards.constants import POSITION_STEP
from taskhive.boards.constants import TaskPriority
from taskhive.boards.constants import TaskStatus


class Workspace(TimeStampedModel):
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        related_name="workspaces",
    )
    name = models.CharField(max_length=255)

    def __str__(self):
        return self.name


class Board(TimeStampedModel):
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        related_name="boards",
    )
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name="boards",
    )
    name = models.CharField(max_length=255)

    def __str__(self):
        return self.name

    def next_position(self) -> float:
        """Position for a task appended to the end of this board."""
        last = self.tasks.order_by("-position").values_list("position", flat=True).first()
        return (last or 0) + POSITION_STEP


class Label(TimeStampedModel):
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        related_name="labels",
    )
    name = models.CharField(max_length=100)
    color = models.CharField(max_length=7, default="#6b7280")

    def __str__(self):
        return self.name


class Task(TimeStampedModel):
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        related_name="tasks",
    )
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name="tasks",
    )
    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name="tasks",
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=TaskStatus.choices,
        default=TaskStatus.TODO,
    )
    priority = models.CharField(
        max_length=20,
        choices=TaskPriority.choices,
        default=TaskPriority.MEDIUM,
    )
    assignee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_tasks",
    )
    due_date = models.DateField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True)
    position = models.FloatField(default=0)
    labels = models.ManyToManyField(Label, related_name="tasks", blank=True)

    class Meta:
        ordering = ["board", "position"]

    def __str__(self):
        return self.title

    def set_status(self, status: str) -> None:
        """Set status, keeping completed_at in step with DONE."""
        self.status = status
        if status == TaskStatus.DONE:
            self.completed_at = self.completed_at or timezone.now()
        else:
            self.completed_at = None

    def archive(self) -> None:
        self.archived_at = timezone.now()
        self.save(update_fields=["archived_at", "modified"])
