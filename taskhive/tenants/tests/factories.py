from collections.abc import Sequence
from typing import Any

import factory
from django.contrib.auth import get_user_model
from factory import post_generation
from factory.django import DjangoModelFactory

from taskhive.tenants.models import Tenant


class UserFactory(DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ["username"]

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.django.Password("taskhive-test-password")
    is_active = True


class TenantFactory(DjangoModelFactory):
    class Meta:
        model = Tenant
        skip_postgeneration_save = True

    name = factory.Sequence(lambda n: f"Test Tenant {n}")
    slug = factory.Sequence(lambda n: f"test-tenant-{n}")
    external_customer_id = factory.Sequence(lambda n: f"cus_test_{n}")
    billing_email = factory.Sequence(lambda n: f"billing{n}@example.com")

    @post_generation
    def members(self, create: bool, extracted: Sequence[Any], **kwargs):  # noqa: FBT001
        if not create or not extracted:
            # Simple build, or no members passed in.
            return
        self.members.add(*extracted)
