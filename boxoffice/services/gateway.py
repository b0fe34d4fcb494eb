"""Payment gateway port and its Stripe implementation.

The rest of the core only sees ``PaymentGateway``; Stripe specifics (price
data layout, coupons for discounts, webhook signatures) stay in this module.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional
import logging

import stripe

from boxoffice.config import get_settings
from boxoffice.errors import ErrorCode, GatewayError

settings = get_settings()
stripe.api_key = settings.stripe_secret_key
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItem:
    name: str
    description: str
    unit_amount: int
    quantity: int


@dataclass(frozen=True)
class GatewaySession:
    id: str
    url: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        # Fully discounted checkouts complete without a charge
        if self.payment_status == "no_payment_required":
            return self.status == "complete"
        return self.payment_status == "paid"

    @property
    def is_open(self) -> bool:
        return self.status == "open" and bool(self.url)

    @classmethod
    def from_stripe(cls, session) -> "GatewaySession":
        payment_intent = session.get("payment_intent")
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.get("id")
        return cls(
            id=session["id"],
            url=session.get("url"),
            status=session.get("status"),
            payment_status=session.get("payment_status"),
            payment_intent=payment_intent,
            metadata=dict(session.get("metadata") or {})
        )


@dataclass(frozen=True)
class GatewayEvent:
    type: str
    session: Optional[GatewaySession] = None


class PaymentGateway(ABC):
    """What the core needs from an external payment provider."""

    @abstractmethod
    def create_checkout_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict,
        customer_email: Optional[str] = None,
        discount_amount: int = 0,
        discount_label: Optional[str] = None
    ) -> GatewaySession:
        """Open a hosted checkout. Amounts are in minor units."""
        ...

    @abstractmethod
    def retrieve_session(self, session_id: str) -> GatewaySession:
        """Fetch the current state of a checkout session."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify a callback signature and parse its payload.

        Raises GatewayError(SIGNATURE_INVALID) when the payload is not
        authentic.
        """
        ...


class StripeGateway(PaymentGateway):
    def __init__(self, currency: str, webhook_secret: str) -> None:
        self.currency = currency
        self.webhook_secret = webhook_secret

    def _price_data(self, item: LineItem) -> dict:
        return {
            "price_data": {
                "currency": self.currency,
                "product_data": {
                    "name": item.name,
                    "description": item.description
                },
                "unit_amount": item.unit_amount
            },
            "quantity": item.quantity
        }

    def create_checkout_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict,
        customer_email: Optional[str] = None,
        discount_amount: int = 0,
        discount_label: Optional[str] = None
    ) -> GatewaySession:
        params = {
            "payment_method_types": ["card"],
            "line_items": [self._price_data(item) for item in line_items],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            if discount_amount > 0:
                coupon = stripe.Coupon.create(
                    amount_off=discount_amount,
                    currency=self.currency,
                    duration="once",
                    name=discount_label or "Discount"
                )
                params["discounts"] = [{"coupon": coupon.id}]

            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error: {e}")
            raise GatewayError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                "Could not start checkout, please try again"
            ) from e

        logger.info(f"Stripe checkout session created: {session.id}")
        return GatewaySession.from_stripe(session)

    def retrieve_session(self, session_id: str) -> GatewaySession:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {session_id}: {e}")
            raise GatewayError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                "Could not check payment status, please try again"
            ) from e
        return GatewaySession.from_stripe(session)

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise GatewayError(ErrorCode.SIGNATURE_INVALID, "Invalid signature") from e
        except ValueError as e:
            raise GatewayError(ErrorCode.MALFORMED_PAYLOAD, "Invalid payload") from e

        session = None
        data_object = event["data"]["object"]
        if data_object.get("object") == "checkout.session":
            session = GatewaySession.from_stripe(data_object)
        return GatewayEvent(type=event["type"], session=session)


@lru_cache()
def get_gateway() -> PaymentGateway:
    return StripeGateway(
        currency=settings.currency,
        webhook_secret=settings.stripe_webhook_secret
    )
