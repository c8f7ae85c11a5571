# app/services/stripe_service.py

import json
import logging
from typing import Any, Dict, Optional

import stripe

from app.config import settings
from app.errors import SignatureInvalid, UpstreamFailure

logger = logging.getLogger(__name__)


class StripeService:
    def __init__(self):
        stripe.api_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the signature over the raw request body, then parse the event."""
        if not sig_header:
            raise SignatureInvalid("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, sig_header, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            return json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(f"Invalid signature: {e}")
        except ValueError as e:
            raise SignatureInvalid(f"Invalid payload: {e}")

    def ensure_customer(self, user_id: str, email: str, customer_id: Optional[str] = None) -> str:
        """Reuse the stored customer or create a new one tagged with our user id."""
        if customer_id:
            return customer_id
        try:
            customer = stripe.Customer.create(email=email, metadata={"user_id": user_id})
            return customer.id
        except stripe.StripeError as e:
            raise UpstreamFailure(f"Stripe customer creation failed: {e}", status_code=502)

    def create_checkout_session(self, customer_id: str, user_id: str, price_id: str, mode: str) -> Dict[str, Any]:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode=mode,
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{settings.app_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{settings.app_url}/",
                metadata={"user_id": user_id, "price_id": price_id},
            )
            return {"id": session.id, "url": session.url}
        except stripe.StripeError as e:
            raise UpstreamFailure(f"Stripe checkout session creation failed: {e}", status_code=502)

    def create_portal_session(self, customer_id: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{settings.app_url}/",
            )
            return session.url
        except stripe.StripeError as e:
            raise UpstreamFailure(f"Stripe portal session creation failed: {e}", status_code=502)

    def checkout_price_id(self, session_id: str) -> Optional[str]:
        """Price of the first line item, for sessions created without our metadata."""
        try:
            items = stripe.checkout.Session.list_line_items(session_id, limit=1)
        except stripe.StripeError as e:
            logger.error("Could not list line items for %s: %s", session_id, e)
            return None
        for item in items.data:
            price = item.get("price") or {}
            return price.get("id")
        return None


# Create the instance that will be imported
stripe_service = StripeService()
