"""
Webhook ingress for the payment provider.

The endpoint does as little as possible inline: verify the signature,
parse the envelope, answer duplicates straight away, and hand everything
else to the billing queue. The provider only needs a fast 2xx; the actual
processing, retries and failure bookkeeping live in billing.tasks.

URL: POST /billing/webhooks/stripe/
Authentication: Stripe-Signature header (HMAC with STRIPE_WEBHOOK_SECRET)

Responses:
    202 queued             event handed to process_webhook_event
    200 already_processed  event id is already in the ledger
    400                    body is not a valid event envelope
    401                    signature missing or invalid
"""

import json
import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from taskhive.billing.constants import WebhookProvider
from taskhive.billing.exceptions import MalformedWebhookEvent
from taskhive.billing.tasks import process_webhook_event
from taskhive.billing.webhooks import WebhookEvent
from taskhive.billing.webhooks import WebhookProcessor

logger = logging.getLogger(__name__)


class StripeWebhookView(APIView):
    """Receive Stripe webhook deliveries and enqueue them."""

    # Requests are authenticated by their signature, not by a DRF user.
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        payload = request.body
        signature = request.headers.get("Stripe-Signature", "")
        secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

        if not secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
            return Response(
                {"error": "Webhook endpoint is not configured"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError:
            logger.warning("Rejected webhook with invalid signature")
            return Response(
                {"error": "Invalid signature"},
                status=status.HTTP_401_UNAUTHORIZED,
            )
        except ValueError:
            logger.warning("Rejected webhook with unparseable body")
            return Response(
                {"error": "Invalid payload"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            event = WebhookEvent.from_payload(
                json.loads(payload),
                provider=WebhookProvider.STRIPE,
            )
        except (ValueError, MalformedWebhookEvent) as exc:
            logger.warning("Rejected malformed webhook: %s", exc)
            return Response(
                {"error": "Invalid payload"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        if WebhookProcessor().is_processed(event):
            logger.info("Webhook event %s already processed", event.id)
            return Response(
                {"status": "already_processed", "event_id": event.id},
                status=status.HTTP_200_OK,
            )

        process_webhook_event.delay(event.to_payload())
        logger.info("Queued webhook event %s (%s)", event.id, event.type)
        return Response(
            {"status": "queued", "event_id": event.id},
            status=status.HTTP_202_ACCEPTED,
        )
