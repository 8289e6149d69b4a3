from fastapi import APIRouter, Depends

from walletapi.config import Settings
from walletapi.deps import get_checkout_gateway, get_purchase_manager, get_settings
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.schemas.health import HealthCheckResponse
from walletapi.services.purchase_service import PurchaseSessionManager

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> HealthCheckResponse:
    """Health check endpoint."""

    return HealthCheckResponse(
        environment=settings.ENVIRONMENT,
        checkout_sdk_loaded=gateway.sdk_loaded,
        active_purchase_sessions=purchase_manager.active_sessions,
    )
