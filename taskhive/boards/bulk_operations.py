"""
Bulk operations over tasks.

A bulk operation applies one change (move, archive, relabel, ...) to a set
of tasks in a workspace. It runs as a background job on the
"bulk_operations" queue; see boards.tasks.

Rules:
- Tasks are looked up scoped to the payload's tenant and workspace. Ids
  that are not found are reported as failed items, not as a job failure.
- The operation's own inputs (target board, labels, assignee, field names)
  are validated before anything is written. A bad input fails the whole
  job with BulkOperationError.
- All writes happen in one transaction. Each task gets a savepoint, so a
  task that fails to save is rolled back alone and reported in the result.

Usage:
    payload = BulkOperationPayload(
        kind=BulkOperationKind.SET_STATUS,
        task_ids=(1, 2, 3),
        actor_id=user.id,
        tenant_id=tenant.id,
        workspace_id=workspace.id,
        data={"status": "done"},
    )
    result = TaskBulkOperationService().execute(payload)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from enum import StrEnum
from typing import Any

from django.db import transaction
from django.utils.dateparse import parse_date

from taskhive.boards.constants import TaskPriority
from taskhive.boards.constants import TaskStatus
from taskhive.boards.models import Board
from taskhive.boards.models import Label
from taskhive.boards.models import Task
from taskhive.boards.models import Workspace
from taskhive.tenants.models import Tenant

logger = logging.getLogger(__name__)

# Fields a bulk "update" may set directly.
UPDATABLE_FIELDS = frozenset({"title", "description", "status", "priority", "due_date"})


class BulkOperationError(Exception):
    """The operation cannot run at all (bad scope, actor or inputs)."""


class BulkOperationKind(StrEnum):
    UPDATE = "bulk_update"
    MOVE = "bulk_move"
    ARCHIVE = "bulk_archive"
    DELETE = "bulk_delete"
    ASSIGN = "bulk_assign"
    SET_STATUS = "bulk_set_status"
    SET_PRIORITY = "bulk_set_priority"
    ADD_LABELS = "bulk_add_labels"
    REMOVE_LABELS = "bulk_remove_labels"
    SET_DUE_DATE = "bulk_set_due_date"


@dataclass(frozen=True)
class BulkOperationPayload:
    """
    Everything a bulk job needs, passed explicitly through the queue.

    ``data`` depends on ``kind``:
        UPDATE: {"updates": {field: value}}
        MOVE: {"board_id": int}
        ASSIGN: {"assignee_id": int | None}
        SET_STATUS: {"status": str}
        SET_PRIORITY: {"priority": str}
        ADD_LABELS / REMOVE_LABELS: {"label_ids": [int]}
        SET_DUE_DATE: {"due_date": "YYYY-MM-DD" | None}
    """

    kind: BulkOperationKind
    task_ids: tuple[int, ...]
    actor_id: int
    tenant_id: int
    workspace_id: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "task_ids": list(self.task_ids),
            "actor_id": self.actor_id,
            "tenant_id": self.tenant_id,
            "workspace_id": self.workspace_id,
            "data": self.data,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BulkOperationPayload:
        try:
            kind = BulkOperationKind(payload["kind"])
        except (KeyError, ValueError) as exc:
            raise BulkOperationError(f"Unknown bulk operation: {payload.get('kind')!r}") from exc
        try:
            return cls(
                kind=kind,
                task_ids=tuple(int(task_id) for task_id in payload["task_ids"]),
                actor_id=int(payload["actor_id"]),
                tenant_id=int(payload["tenant_id"]),
                workspace_id=int(payload["workspace_id"]),
                data=dict(payload.get("data") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise BulkOperationError(f"Invalid bulk operation payload: {exc}") from exc


@dataclass
class BulkOperationResult:
    kind: BulkOperationKind
    requested_count: int = 0
    successful_ids: list[int] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def successful_count(self) -> int:
        return len(self.successful_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def add_failure(self, task_id: int, error: str) -> None:
        self.failures.append({"task_id": task_id, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": str(self.kind),
            "successful_count": self.successful_count,
            "failed_count": self.failed_count,
            "details": {
                "requested_count": self.requested_count,
                "successful_task_ids": self.successful_ids,
                "failed_tasks": self.failures,
            },
        }


TaskMutation = Callable[[Task], None]


class TaskBulkOperationService:
    """Validates and applies bulk operations to tasks."""

    def execute(self, payload: BulkOperationPayload) -> BulkOperationResult:
        tenant = Tenant.objects.filter(pk=payload.tenant_id).first()
        if tenant is None:
            raise BulkOperationError(f"Tenant {payload.tenant_id} not found")
        if not Workspace.objects.filter(pk=payload.workspace_id, tenant=tenant).exists():
            raise BulkOperationError(
                f"Workspace {payload.workspace_id} not found for tenant {tenant.pk}",
            )
        actor = tenant.members.filter(pk=payload.actor_id, is_active=True).first()
        if actor is None:
            raise BulkOperationError(
                f"User {payload.actor_id} is not an active member of tenant {tenant.pk}",
            )

        mutate = self._prepare(payload, tenant)

        requested = list(dict.fromkeys(payload.task_ids))
        tasks = list(
            Task.objects.filter(
                pk__in=requested,
                tenant=tenant,
                workspace_id=payload.workspace_id,
            ).order_by("pk"),
        )
        result = BulkOperationResult(kind=payload.kind, requested_count=len(requested))

        found = {task.pk for task in tasks}
        missing = [task_id for task_id in requested if task_id not in found]
        if missing:
            logger.warning(
                "Some tasks not found for bulk operation %s: requested=%s missing=%s",
                payload.kind,
                requested,
                missing,
            )
            for task_id in missing:
                result.add_failure(task_id, "Task not found in this workspace")

        with transaction.atomic():
            for task in tasks:
                try:
                    with transaction.atomic():
                        mutate(task)
                except Exception as exc:
                    logger.exception(
                        "Bulk operation %s failed for task %s (actor=%s)",
                        payload.kind,
                        task.pk,
                        actor.pk,
                    )
                    result.add_failure(task.pk, str(exc))
                    continue
                result.successful_ids.append(task.pk)

        logger.info(
            "Bulk operation %s by user %s: successful=%s failed=%s",
            payload.kind,
            actor.pk,
            result.successful_count,
            result.failed_count,
        )
        return result

    # ------------------------------------------------------------------
    # Validation: turn the payload into a per-task mutation
    # ------------------------------------------------------------------

    def _prepare(self, payload: BulkOperationPayload, tenant: Tenant) -> TaskMutation:
        data = payload.data
        match payload.kind:
            case BulkOperationKind.UPDATE:
                return self._update(self._clean_updates(data.get("updates")))
            case BulkOperationKind.MOVE:
                board = Board.objects.filter(
                    pk=data.get("board_id"),
                    tenant=tenant,
                    workspace_id=payload.workspace_id,
                ).first()
                if board is None:
                    raise BulkOperationError("Target board not found")
                return self._move(board)
            case BulkOperationKind.ARCHIVE:
                return self._archive
            case BulkOperationKind.DELETE:
                return self._delete
            case BulkOperationKind.ASSIGN:
                assignee_id = data.get("assignee_id")
                assignee = None
                if assignee_id is not None:
                    assignee = tenant.members.filter(pk=assignee_id, is_active=True).first()
                    if assignee is None:
                        raise BulkOperationError(
                            f"User {assignee_id} is not a member of this tenant",
                        )
                return self._assign(assignee)
            case BulkOperationKind.SET_STATUS:
                return self._set_status(self._clean_choice(data.get("status"), TaskStatus))
            case BulkOperationKind.SET_PRIORITY:
                return self._set_priority(
                    self._clean_choice(data.get("priority"), TaskPriority),
                )
            case BulkOperationKind.ADD_LABELS:
                return self._add_labels(self._clean_labels(data.get("label_ids"), tenant))
            case BulkOperationKind.REMOVE_LABELS:
                return self._remove_labels(self._clean_labels(data.get("label_ids"), tenant))
            case BulkOperationKind.SET_DUE_DATE:
                return self._set_due_date(self._clean_date(data.get("due_date")))

    def _clean_choice(self, value: Any, choices) -> str:
        if value not in choices.values:
            raise BulkOperationError(f"Invalid value {value!r}; expected one of {choices.values}")
        return value

    def _clean_date(self, value: Any) -> date | None:
        if value in (None, ""):
            return None
        parsed = parse_date(str(value))
        if parsed is None:
            raise BulkOperationError(f"Invalid due date {value!r}")
        return parsed

    def _clean_labels(self, label_ids: Any, tenant: Tenant) -> list[Label]:
        if not label_ids:
            raise BulkOperationError("No labels given")
        wanted = {int(label_id) for label_id in label_ids}
        labels = list(Label.objects.filter(pk__in=wanted, tenant=tenant))
        if len(labels) != len(wanted):
            unknown = wanted - {label.pk for label in labels}
            raise BulkOperationError(f"Labels not found for this tenant: {sorted(unknown)}")
        return labels

    def _clean_updates(self, updates: Any) -> dict[str, Any]:
        if not isinstance(updates, dict) or not updates:
            raise BulkOperationError("No updates given")
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise BulkOperationError(f"Fields cannot be bulk updated: {sorted(unknown)}")
        cleaned = dict(updates)
        if "status" in cleaned:
            cleaned["status"] = self._clean_choice(cleaned["status"], TaskStatus)
        if "priority" in cleaned:
            cleaned["priority"] = self._clean_choice(cleaned["priority"], TaskPriority)
        if "due_date" in cleaned:
            cleaned["due_date"] = self._clean_date(cleaned["due_date"])
        return cleaned

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _update(self, updates: dict[str, Any]) -> TaskMutation:
        def apply(task: Task) -> None:
            for name, value in updates.items():
                if name == "status":
                    task.set_status(value)
                else:
                    setattr(task, name, value)
            task.save()

        return apply

    def _move(self, board: Board) -> TaskMutation:
        def apply(task: Task) -> None:
            if task.board_id == board.pk:
                return
            task.board = board
            task.position = board.next_position()
            task.save(update_fields=["board", "position", "modified"])

        return apply

    def _archive(self, task: Task) -> None:
        task.archive()

    def _delete(self, task: Task) -> None:
        task.delete()

    def _assign(self, assignee) -> TaskMutation:
        def apply(task: Task) -> None:
            task.assignee = assignee
            task.save(update_fields=["assignee", "modified"])

        return apply

    def _set_status(self, status: str) -> TaskMutation:
        def apply(task: Task) -> None:
            task.set_status(status)
            task.save(update_fields=["status", "completed_at", "modified"])

        return apply

    def _set_priority(self, priority: str) -> TaskMutation:
        def apply(task: Task) -> None:
            task.priority = priority
            task.save(update_fields=["priority", "modified"])

        return apply

    def _add_labels(self, labels: list[Label]) -> TaskMutation:
        def apply(task: Task) -> None:
            task.labels.add(*labels)

        return apply

    def _remove_labels(self, labels: list[Label]) -> TaskMutation:
        def apply(task: Task) -> None:
            task.labels.remove(*labels)

        return apply

    def _set_due_date(self, due_date: date | None) -> TaskMutation:
        def apply(task: Task) -> None:
            task.due_date = due_date
            task.save(update_fields=["due_date", "modified"])

        return apply
