from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import Field, computed_field

from walletapi.schemas.base import CamelModel
from walletapi.schemas.coins import CoinPackage
from walletapi.schemas.payments import CheckoutOrder
from walletapi.utils import coin_utils


class PurchaseState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SELECTING = "selecting"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class FlowKind(str, Enum):
    PACKAGE = "package"
    TOPUP = "topup"


class ErrorAction(str, Enum):
    RETRY = "retry"
    RELOAD = "reload"
    CLOSE = "close"


class SessionError(CamelModel):
    """세션 에러 필드 - 모든 에러 상태는 다음 행동을 제시함"""

    code: str
    message: str
    category: str = Field("network", description="network | payment | validation")
    retryable: bool = True
    action: ErrorAction = ErrorAction.RETRY


class TopUpTier(CamelModel):
    """고정 충전 옵션"""

    id: str
    coins: int
    rupee_price: Decimal
    bonus_coins: int = 0
    popular: bool = False
    savings: Optional[str] = None

    @computed_field
    @property
    def total_coins(self) -> int:
        return self.coins + self.bonus_coins

    @computed_field
    @property
    def price_per_coin(self) -> Decimal:
        return coin_utils.price_per_coin(self.rupee_price, self.total_coins)


class PurchaseSelection(CamelModel):
    """선택 변경 요청 - 패키지 플로우는 package_id, 충전 플로우는 tier_id 또는 custom_rupees"""

    package_id: Optional[str] = None
    tier_id: Optional[str] = None
    custom_rupees: Optional[Decimal] = None


class OpenPurchaseRequest(CamelModel):
    """플로우 열기 - 헤더의 사용자 정보를 덮어쓸 수 있음"""

    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


class PurchaseSessionSnapshot(CamelModel):
    session_id: str
    kind: FlowKind
    state: PurchaseState
    packages: List[CoinPackage] = Field(default_factory=list)
    tiers: List[TopUpTier] = Field(default_factory=list)
    selected_package_id: Optional[str] = None
    selected_tier_id: Optional[str] = None
    custom_rupees: Optional[Decimal] = None
    amount: Optional[Decimal] = Field(None, description="결제할 루피 금액")
    total_coins: int = 0
    sdk_loaded: bool = False
    can_pay: bool = False
    can_close: bool = True
    validation_message: Optional[str] = None
    error: Optional[SessionError] = None
    purchased_coins: int = 0
    checkout: Optional[CheckoutOrder] = None
    closed: bool = False
