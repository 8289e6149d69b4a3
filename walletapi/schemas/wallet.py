from datetime import datetime
from typing import Optional

from pydantic import Field

from walletapi.schemas.base import CamelModel


class WalletBalanceSnapshot(CamelModel):
    """표시용 잔액 = 서버 확정값 + 임시(낙관적) 증가분"""

    balance: int = Field(..., description="서버 확정 잔액")
    optimistic_delta: int = Field(0, description="서버 확인 전 적용된 증가분")
    displayed: int = Field(..., description="화면에 표시되는 잔액")
    last_updated: Optional[datetime] = None
    pending_transactions: int = 0
    is_stale: bool = Field(False, description="최근 갱신이 실패했는지 여부")
    formatted: str = ""
    formatted_with_rupees: str = ""
