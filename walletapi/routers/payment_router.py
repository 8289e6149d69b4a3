"""
체크아웃 콜백 라우터

호스팅 체크아웃 페이지가 결제 결과를 알려주는 경로입니다. 결제 1건당 첫 번째
종료 콜백만 반영되고 이후 콜백은 accepted=false 로 무시됩니다. 주문한 사용자가 아닌
요청은 존재하지 않는 주문과 같이 404 로 응답합니다.
"""

from fastapi import APIRouter, Depends, Path

from walletapi.core.auth import get_current_user
from walletapi.deps import get_checkout_gateway
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.payments import (
    GatewayFailure,
    PaymentCallbackResponse,
    PaymentConfirmation,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{order_id}/success", response_model=PaymentCallbackResponse)
async def payment_success(
    confirmation: PaymentConfirmation,
    order_id: str = Path(..., description="게이트웨이 주문 ID"),
    current_user: WalletUser = Depends(get_current_user),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
) -> PaymentCallbackResponse:
    """결제 성공 콜백 - 서버 서명 검증을 통과해야 성공으로 확정"""
    accepted = await gateway.complete(order_id, confirmation, user_id=current_user.id)
    return PaymentCallbackResponse(order_id=order_id, accepted=accepted)


@router.post("/{order_id}/failure", response_model=PaymentCallbackResponse)
async def payment_failure(
    failure: GatewayFailure,
    order_id: str = Path(..., description="게이트웨이 주문 ID"),
    current_user: WalletUser = Depends(get_current_user),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
) -> PaymentCallbackResponse:
    accepted = gateway.fail(order_id, failure, user_id=current_user.id)
    return PaymentCallbackResponse(order_id=order_id, accepted=accepted)


@router.post("/{order_id}/dismiss", response_model=PaymentCallbackResponse)
async def payment_dismiss(
    order_id: str = Path(..., description="게이트웨이 주문 ID"),
    current_user: WalletUser = Depends(get_current_user),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
) -> PaymentCallbackResponse:
    """결제창 닫힘 - PAYMENT_CANCELLED 로 종료"""
    accepted = gateway.dismiss(order_id, user_id=current_user.id)
    return PaymentCallbackResponse(order_id=order_id, accepted=accepted)
