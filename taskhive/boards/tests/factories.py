import factory
from factory.django import DjangoModelFactory

from taskhive.boards.models import Board
from taskhive.boards.models import Label
from taskhive.boards.models import Task
from taskhive.boards.models import Workspace
from taskhive.tenants.tests.factories import TenantFactory


class WorkspaceFactory(DjangoModelFactory):
    class Meta:
        model = Workspace

    tenant = factory.SubFactory(TenantFactory)
    name = factory.Sequence(lambda n: f"Workspace {n}")


class BoardFactory(DjangoModelFactory):
    class Meta:
        model = Board

    workspace = factory.SubFactory(WorkspaceFactory)
    tenant = factory.SelfAttribute("workspace.tenant")
    name = factory.Sequence(lambda n: f"Board {n}")


class LabelFactory(DjangoModelFactory):
    class Meta:
        model = Label

    tenant = factory.SubFactory(TenantFactory)
    name = factory.Sequence(lambda n: f"label-{n}")


class TaskFactory(DjangoModelFactory):
    class Meta:
        model = Task

    board = factory.SubFactory(BoardFactory)
    workspace = factory.SelfAttribute("board.workspace")
    tenant = factory.SelfAttribute("board.tenant")
    title = factory.Sequence(lambda n: f"Task {n}")
    position = factory.Sequence(lambda n: float((n + 1) * 1000))
