"""
Stripe payment verification (read-only).
"""

import asyncio
from decimal import Decimal

import stripe

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.services.interfaces.platforms import PaymentProcessor, PaymentVerification

settings = get_settings()


class StripePaymentProcessor(PaymentProcessor):
    async def verify_payment_intent(self, payment_intent_id: str) -> PaymentVerification:
        if not settings.STRIPE_SECRET_KEY:
            raise ExternalServiceError("stripe", "Stripe not configured")
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, payment_intent_id, api_key=settings.STRIPE_SECRET_KEY
            )
        except stripe.StripeError as e:
            raise ExternalServiceError("stripe", f"could not retrieve payment intent: {e}") from e

        # Stripe amounts are in the currency's minor unit.
        received = intent.get("amount_received") or 0
        return PaymentVerification(
            payment_intent_id=payment_intent_id,
            succeeded=intent.get("status") == "succeeded",
            amount=(Decimal(received) / Decimal(100)).quantize(Decimal("0.01")),
            currency=str(intent.get("currency", "")).upper(),
        )
