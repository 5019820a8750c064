import uuid

from django.conf import settings
from django.db import models
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel


class Tenant(TimeStampedModel):
    """
    A customer account. Workspaces, boards and tasks hang off a tenant, and
    the tenant is what a billing subscription is attached to.
    """

    name = models.CharField(
        max_length=255,
        help_text=_("Name of the tenant, e.g. 'Acme Inc'"),
    )

    slug = models.SlugField(
        unique=True,
        blank=True,
    )

    external_customer_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text=_("Payment provider customer ID (cus_xxx)"),
    )

    billing_email = models.EmailField(
        blank=True,
        default="",
        help_text=_("Where billing notices go. Falls back to member emails."),
    )

    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        related_name="tenants",
        blank=True,
    )

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        """Derive a unique slug from the name when none is set."""
        if not self.slug:
            base_slug = slugify(self.name) or uuid.uuid4().hex[:12]
            candidate = base_slug
            counter = 2
            while Tenant.objects.filter(slug=candidate).exclude(pk=self.pk).exists():
                candidate = f"{base_slug}-{counter}"
                counter += 1
            self.slug = candidate
        super().save(*args, **kwargs)

    def billing_recipients(self) -> list[str]:
        """Email addresses that should receive billing notices."""
        if self.billing_email:
            return [self.billing_email]
        return [
            email
            for email in self.members.filter(is_active=True)
            .exclude(email="")
            .values_list("email", flat=True)
        ]
