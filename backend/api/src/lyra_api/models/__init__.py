"""API-specific request/response models.

This package contains Pydantic models specific to the REST API layer.
Domain models live in lyra_shared.models.
"""

from lyra_api.models.payments import InitializePaymentRequest
from lyra_api.models.webhooks import IpnResponse

__all__ = ["InitializePaymentRequest", "IpnResponse"]
