from django.urls import path

from taskhive.billing import views

app_name = "billing"

urlpatterns = [
    path(
        "webhooks/stripe/",
        views.StripeWebhookView.as_view(),
        name="stripe-webhook",
    ),
]
