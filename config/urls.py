from django.conf import settings
from django.contrib import admin
from django.urls import include
from django.urls import path

urlpatterns = [
    # Admin URLs...
    path(settings.ADMIN_URL, admin.site.urls),
    # App URLs...
    path("billing/", include("taskhive.billing.urls", namespace="billing")),
]
