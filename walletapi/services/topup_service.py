from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from walletapi.core.exceptions import ValidationError
from walletapi.schemas.purchase import FlowKind, PurchaseSelection, TopUpTier
from walletapi.services.purchase_service import PurchaseFlow
from walletapi.utils.coin_utils import format_rupees, rupees_to_coins


TOPUP_TIERS: List[TopUpTier] = [
    TopUpTier(id="basic", coins=100, rupee_price=Decimal("99")),
    TopUpTier(
        id="popular",
        coins=500,
        rupee_price=Decimal("449"),
        bonus_coins=50,
        popular=True,
        savings="10% bonus",
    ),
    TopUpTier(
        id="premium",
        coins=1000,
        rupee_price=Decimal("799"),
        bonus_coins=200,
        savings="20% bonus",
    ),
    TopUpTier(
        id="ultimate",
        coins=2500,
        rupee_price=Decimal("1799"),
        bonus_coins=750,
        savings="30% bonus",
    ),
]


class TopUpFlow(PurchaseFlow):
    """충전 플로우 - 고정 티어 또는 직접 입력 금액

    상태 머신은 패키지 구매와 같고 선택 검증만 다릅니다. 직접 입력 금액은
    최소/최대 범위를 벗어나면 processing 으로 넘어가지 않으며 값을 조정하지도 않습니다.
    """

    kind = FlowKind.TOPUP

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tiers: List[TopUpTier] = []
        self.selected_tier_id: Optional[str] = None
        self.custom_rupees: Optional[Decimal] = None

    @property
    def min_rupees(self) -> Decimal:
        return Decimal(self.settings.TOPUP_MIN_RUPEES)

    @property
    def max_rupees(self) -> Decimal:
        return Decimal(self.settings.TOPUP_MAX_RUPEES)

    async def _fetch_options(self) -> List[TopUpTier]:
        return list(TOPUP_TIERS)

    def _apply_options(self, options: List[TopUpTier]) -> None:
        self.tiers = options

    def _find_tier(self, tier_id: Optional[str]) -> Optional[TopUpTier]:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None

    def _apply_selection(self, selection: PurchaseSelection) -> None:
        if selection.custom_rupees is not None:
            # 직접 입력은 티어 선택을 해제하고, 범위 검증은 confirm 시점에 함
            self.selected_tier_id = None
            self.custom_rupees = selection.custom_rupees
            message = self._custom_amount_error(selection.custom_rupees)
            if message:
                raise ValidationError(message, details={"custom_rupees": str(selection.custom_rupees)})
            return

        if not selection.tier_id:
            raise ValidationError("Please select a top-up option")
        if self._find_tier(selection.tier_id) is None:
            raise ValidationError(
                "Selected top-up option is not available",
                details={"tier_id": selection.tier_id},
            )
        self.selected_tier_id = selection.tier_id
        self.custom_rupees = None

    def _clear_selection(self) -> None:
        self.selected_tier_id = None
        self.custom_rupees = None

    def _custom_amount_error(self, amount: Decimal) -> Optional[str]:
        if not amount.is_finite():
            return "Please enter a valid amount"
        if amount < self.min_rupees:
            return f"Minimum top-up amount is {format_rupees(self.min_rupees).replace('.00', '')}"
        if amount > self.max_rupees:
            return f"Maximum top-up amount is {format_rupees(self.max_rupees).replace('.00', '')}"
        if rupees_to_coins(amount) <= 0:
            return "Please enter a valid amount"
        return None

    def _resolve_purchase(self) -> Tuple[Decimal, int]:
        if self.custom_rupees is not None:
            message = self._custom_amount_error(self.custom_rupees)
            if message:
                raise ValidationError(message)
            return self.custom_rupees, rupees_to_coins(self.custom_rupees)

        tier = self._find_tier(self.selected_tier_id)
        if tier is None:
            raise ValidationError("Please select a top-up option")
        return tier.rupee_price, tier.total_coins

    def _snapshot_fields(self) -> Dict[str, Any]:
        return {
            "tiers": self.tiers,
            "selected_tier_id": self.selected_tier_id,
            "custom_rupees": self.custom_rupees,
        }
