"""API routes package.

Routers are organized by domain:

- health: Health check endpoints
- webhooks: Lyra IPN
- payments: Form-token initialisation and browser returns

All routers are registered in main.py.
"""

from lyra_api.routes.health import router as health_router
from lyra_api.routes.payments import router as payments_router
from lyra_api.routes.webhooks import router as webhooks_router

__all__ = ["health_router", "payments_router", "webhooks_router"]
