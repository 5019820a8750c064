import pytest

from config import celery_app
from taskhive.billing.models import Plan
from taskhive.tenants.models import Tenant
from taskhive.tenants.tests.factories import TenantFactory
from taskhive.tenants.tests.factories import UserFactory


@pytest.fixture(autouse=True)
def _locmem_email(settings) -> None:
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"


@pytest.fixture(autouse=True)
def _clear_cache():
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def celery_retries_inline():
    """
    Let eager tasks run their retries and report the outcome on the result.

    With eager propagation on, the first retry raises celery.exceptions.Retry
    out of apply(). Turning it off lets apply() re-run the retry signature
    until the task succeeds or fails for good.
    """
    conf = celery_app.conf
    propagates = conf.task_eager_propagates
    # The app reads Django settings under the CELERY namespace, so the
    # prefixed key is the one that takes effect.
    conf.CELERY_TASK_EAGER_PROPAGATES = False
    yield
    conf.CELERY_TASK_EAGER_PROPAGATES = propagates


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def tenant(db, user) -> Tenant:
    return TenantFactory(members=[user])


@pytest.fixture
def plan(db) -> Plan:
    plan, _ = Plan.objects.get_or_create(
        code="starter",
        defaults={
            "name": "Starter",
            "external_price_id": "price_starter_monthly",
            "monthly_price_cents": 1200,
            "display_order": 1,
        },
    )
    return plan
