"""FastAPI dependency injection providers for shared services.

Services are lazily instantiated and cached with @lru_cache.

Usage in routes:
    from lyra_api.dependencies import get_ipn_handler

    @router.post("/payments/lyra-ipn")
    async def lyra_ipn(
        request: Request,
        handler: IpnHandler = Depends(get_ipn_handler),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        └── OrderService
                ├── IpnHandler (+ LyraConfigService)
                └── PaymentService (+ LyraConfigService)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from lyra_shared.services.dynamodb import get_dynamodb_service
from lyra_shared.services.ipn_handler import IpnHandler
from lyra_shared.services.lyra_config import get_lyra_config_service
from lyra_shared.services.order_service import OrderService
from lyra_shared.services.payment_service import PaymentService


@lru_cache
def get_order_service() -> OrderService:
    """Get cached OrderService instance."""
    return OrderService(db=get_dynamodb_service())


@lru_cache
def get_ipn_handler() -> IpnHandler:
    """Get cached IpnHandler instance.

    Returns:
        IpnHandler configured with DynamoDB, orders and Lyra config.
    """
    return IpnHandler(
        db=get_dynamodb_service(),
        orders=get_order_service(),
        config=get_lyra_config_service(),
    )


@lru_cache
def get_payment_service() -> PaymentService:
    """Get cached PaymentService instance."""
    return PaymentService(
        orders=get_order_service(),
        config=get_lyra_config_service(),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB and SSM singletons.
    """
    from lyra_shared.services.dynamodb import reset_dynamodb_service
    from lyra_shared.services.ssm_service import reset_ssm_service

    get_order_service.cache_clear()
    get_ipn_handler.cache_clear()
    get_payment_service.cache_clear()
    get_lyra_config_service.cache_clear()

    reset_dynamodb_service()
    reset_ssm_service()
