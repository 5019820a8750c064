from django.contrib import admin

from taskhive.tenants.models import Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ["name", "slug", "external_customer_id", "billing_email"]
    search_fields = ["name", "slug", "external_customer_id", "billing_email"]
    prepopulated_fields = {"slug": ("name",)}
    filter_horizontal = ["members"]
