from decimal import Decimal
from typing import List

from pydantic import ConfigDict, Field, model_validator

from walletapi.schemas.base import CamelModel
from walletapi.utils.coin_utils import calculate_total_coins


class CoinPackage(CamelModel):
    """구매 가능한 코인 묶음 - 조회 이후 변경되지 않음"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="패키지 ID")
    name: str = Field("", description="패키지명")
    coin_amount: int = Field(..., ge=0, description="기본 코인 수")
    bonus_coins: int = Field(0, ge=0, description="보너스 코인 수")
    total_coins: int = Field(0, ge=0, description="coin_amount + bonus_coins")
    rupee_price: Decimal = Field(..., gt=0, description="루피 가격")
    is_popular: bool = Field(False, description="표시용 힌트")

    @model_validator(mode="before")
    @classmethod
    def _derive_total_coins(cls, data):
        # 백엔드가 보낸 totalCoins 대신 항상 coinAmount + bonusCoins로 계산
        if not isinstance(data, dict):
            return data
        data = dict(data)
        base = data.get("coinAmount", data.get("coin_amount"))
        bonus = data.get("bonusCoins", data.get("bonus_coins")) or 0
        data.pop("total_coins", None)
        try:
            data["totalCoins"] = calculate_total_coins(base, bonus)
        except (TypeError, ValueError):
            data.pop("totalCoins", None)
        return data


class CoinPackageCatalog(CamelModel):
    """패키지 카탈로그 응답 (빈 목록도 정상 응답)"""

    packages: List[CoinPackage] = Field(default_factory=list)
