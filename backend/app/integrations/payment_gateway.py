"""
Payment gateway interface.

Services depend on this interface only; the concrete Stripe adapter is
created once at startup and passed in explicitly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

PAID = "paid"


@dataclass(frozen=True)
class CheckoutSessionHandle:
    """Result of creating a hosted checkout session."""
    id: str
    redirect_url: str


@dataclass(frozen=True)
class GatewaySession:
    """Authoritative state of a checkout session as reported by the gateway."""
    id: str
    payment_status: str
    amount_total: Optional[int]
    currency: Optional[str]
    customer_email: Optional[str]
    transaction_id: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAID


class PaymentGateway(ABC):
    """Checkout-session capability of an external payment provider."""

    @abstractmethod
    async def create_checkout_session(
        self,
        metadata: Dict[str, str],
        amount: int,
        currency: str,
        product_name: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        """
        Create a hosted checkout session.

        Raises:
            GatewayUnavailableError: provider unreachable or refused the request
        """

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> GatewaySession:
        """
        Fetch the current state of a checkout session.

        Raises:
            InvalidInputError: unknown or malformed session ID
            GatewayUnavailableError: provider unreachable
        """

    async def close(self) -> None:
        """Release any held resources."""
