import pytest

from taskhive.tenants.models import Tenant


@pytest.mark.django_db
class TestTenantSlug:
    def test_slug_is_derived_from_name(self):
        tenant = Tenant.objects.create(name="Acme Inc")
        assert tenant.slug == "acme-inc"

    def test_duplicate_names_get_distinct_slugs(self):
        first = Tenant.objects.create(name="Acme Inc")
        second = Tenant.objects.create(name="Acme Inc")
        third = Tenant.objects.create(name="Acme Inc")

        assert first.slug == "acme-inc"
        assert second.slug == "acme-inc-2"
        assert third.slug == "acme-inc-3"

    def test_resave_keeps_slug(self):
        tenant = Tenant.objects.create(name="Acme Inc")
        tenant.name = "Acme Renamed"
        tenant.save()

        tenant.refresh_from_db()
        assert tenant.slug == "acme-inc"

    def test_name_without_slug_characters_gets_random_slug(self):
        tenant = Tenant.objects.create(name="???")
        assert len(tenant.slug) == 12
