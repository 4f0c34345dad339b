"""
Shared FastAPI dependencies.

External collaborators are created by the application lifespan and
handed to endpoints from `app.state`.
"""

from fastapi import Request
from backend.app.integrations.payment_gateway import PaymentGateway


async def get_gateway(request: Request) -> PaymentGateway:
    """FastAPI dependency returning the process-wide payment gateway."""
    return request.app.state.gateway
