"""Backend services for the Lyra payment integration."""

from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .ipn_handler import IpnHandler, IpnOutcome
from .lyra_client import LyraClient, LyraServiceError
from .lyra_config import LyraConfigError, LyraConfigService, get_lyra_config_service
from .order_service import OrderService
from .payment_service import PaymentService, PaymentSession
from .signature import SignatureVerifier, SigningKey, VerificationResult
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stuck_orders import unlock_stuck_orders

__all__ = [
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "IpnHandler",
    "IpnOutcome",
    "LyraClient",
    "LyraServiceError",
    "LyraConfigError",
    "LyraConfigService",
    "get_lyra_config_service",
    "OrderService",
    "PaymentService",
    "PaymentSession",
    "SignatureVerifier",
    "SigningKey",
    "VerificationResult",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "unlock_stuck_orders",
]
