"""
Stripe Checkout adapter.

Wraps the blocking Stripe SDK client, runs calls in a worker thread and
classifies Stripe errors into application errors. A circuit breaker stops
hammering Stripe while it is failing.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import stripe

from backend.app.core.config import Settings
from backend.app.core.exceptions import GatewayUnavailableError, InvalidInputError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.integrations.payment_gateway import (
    CheckoutSessionHandle,
    GatewaySession,
    PaymentGateway,
)

logger = logging.getLogger("zapshift.gateway")


def _is_transient(error: Exception) -> bool:
    """Only transport and provider-side failures count against the breaker."""
    return not isinstance(error, (stripe.InvalidRequestError, stripe.CardError))


class StripeGateway(PaymentGateway):
    """PaymentGateway backed by Stripe Checkout Sessions."""

    def __init__(
        self,
        api_key: str,
        success_url: str,
        cancel_url: str,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.client = client or stripe.StripeClient(api_key)
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="stripe")

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            api_key=settings.stripe_secret_key,
            success_url=f"{settings.site_domain}{settings.checkout_success_path}",
            cancel_url=f"{settings.site_domain}{settings.checkout_cancel_path}",
            circuit_breaker=CircuitBreaker(
                failure_threshold=settings.gateway_failure_threshold,
                reset_timeout=settings.gateway_reset_timeout,
                name="stripe",
            ),
        )

    async def _call(self, operation: str, func, *args, **kwargs) -> Any:
        async def run():
            return await asyncio.to_thread(func, *args, **kwargs)

        try:
            return await self.circuit_breaker.call(run, should_trip=_is_transient)
        except CircuitOpenError as e:
            logger.warning("Gateway circuit open", extra={"operation": operation})
            raise GatewayUnavailableError(str(e), details={"operation": operation}) from e
        except stripe.InvalidRequestError as e:
            logger.info(
                "Gateway rejected request",
                extra={"operation": operation, "stripe_error": e.user_message or str(e)}
            )
            raise InvalidInputError(
                "Payment gateway rejected the request",
                details={"operation": operation, "reason": e.user_message or str(e)}
            ) from e
        except stripe.StripeError as e:
            logger.error(
                "Gateway call failed",
                extra={"operation": operation, "stripe_error": type(e).__name__}
            )
            raise GatewayUnavailableError(details={"operation": operation}) from e

    async def create_checkout_session(
        self,
        metadata: Dict[str, str],
        amount: int,
        currency: str,
        product_name: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount,
                        "product_data": {"name": f"Please pay for: {product_name}"},
                    },
                    "quantity": 1,
                }
            ],
            "metadata": metadata,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = await self._call(
            "create_checkout_session",
            self.client.checkout.sessions.create,
            params=params,
        )
        return CheckoutSessionHandle(id=session.id, redirect_url=session.url)

    async def retrieve_session(self, session_id: str) -> GatewaySession:
        if not session_id or not session_id.strip():
            raise InvalidInputError("Missing checkout session id")

        session = await self._call(
            "retrieve_session",
            self.client.checkout.sessions.retrieve,
            session_id,
        )
        return self._to_gateway_session(session)

    @staticmethod
    def _to_gateway_session(session: Any) -> GatewaySession:
        customer_email = _field(session, "customer_email")
        details = _field(session, "customer_details")
        if not customer_email and details:
            customer_email = _field(details, "email")

        payment_intent = _field(session, "payment_intent")
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = _field(payment_intent, "id")

        metadata = _field(session, "metadata") or {}
        return GatewaySession(
            id=_field(session, "id"),
            payment_status=_field(session, "payment_status"),
            amount_total=_field(session, "amount_total"),
            currency=_field(session, "currency"),
            customer_email=customer_email,
            transaction_id=payment_intent,
            metadata={k: str(v) for k, v in dict(metadata).items()},
        )


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)
