from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from walletapi.schemas.base import CamelModel

# 게이트웨이 실패 코드
CODE_PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
CODE_VERIFICATION_FAILED = "VERIFICATION_FAILED"
CODE_VERIFICATION_ERROR = "VERIFICATION_ERROR"
CODE_INITIATION_ERROR = "INITIATION_ERROR"
CODE_CHECKOUT_EXPIRED = "CHECKOUT_EXPIRED"

CANCELLED_CODES = {CODE_PAYMENT_CANCELLED, CODE_CHECKOUT_EXPIRED}


class UserIdentity(BaseModel):
    """결제창 prefill 정보"""

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    contact: str = ""


class PaymentConfirmation(BaseModel):
    """체크아웃 성공 콜백 페이로드 (Razorpay handler 응답)"""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="razorpay_payment_id")
    order_id: str = Field(..., alias="razorpay_order_id")
    signature: str = Field(..., alias="razorpay_signature")


class GatewayFailure(BaseModel):
    """체크아웃 실패 콜백 페이로드"""

    code: str = "PAYMENT_FAILED"
    description: Optional[str] = None
    source: str = "gateway"
    step: str = "payment"
    reason: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return self.code in CANCELLED_CODES


class PaymentResult(BaseModel):
    """검증까지 끝난 결제 성공 결과"""

    confirmation: PaymentConfirmation
    coins: int
    amount: Decimal


class PaymentRequest(BaseModel):
    """initiate_payment 입력

    coins는 게이트웨이에 의미가 없지만 성공 콜백까지 그대로 전달되어 장부 처리에 쓰입니다.
    on_success / on_failure 는 호출당 정확히 하나만 한 번 호출됩니다.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    amount: Decimal = Field(..., gt=0, description="루피 금액")
    coins: int = Field(..., gt=0, description="지급될 총 코인")
    user: UserIdentity
    on_success: Optional[Callable[[PaymentResult], Any]] = None
    on_failure: Optional[Callable[[GatewayFailure], Any]] = None


class CheckoutOrder(CamelModel):
    """UI가 호스팅 체크아웃을 열 때 필요한 주문 정보"""

    order_id: str
    amount: int = Field(..., description="최소 통화 단위 (paise)")
    currency: str = "INR"
    key_id: str = ""
    coins: int = 0
    script_url: str = ""
    prefill: Dict[str, str] = Field(default_factory=dict)


class PaymentCallbackResponse(CamelModel):
    """체크아웃 콜백 처리 결과 - accepted=False 는 이미 종료된 결제에 대한 중복 콜백"""

    order_id: str
    accepted: bool
