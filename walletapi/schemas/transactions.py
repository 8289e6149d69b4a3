from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict, Field, model_validator

from walletapi.schemas.base import CamelModel
from walletapi.schemas.pagination import PaginationCursor


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    SPEND = "spend"
    EARN = "earn"
    REFUND = "refund"
    WITHDRAW = "withdraw"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionType.PURCHASE, TransactionType.EARN, TransactionType.REFUND)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    def can_transition_to(self, new_status: "TransactionStatus") -> bool:
        """completed/failed 이후에는 completed -> refunded 만 허용"""
        if self == new_status:
            return True
        if self == TransactionStatus.PENDING:
            return True
        return self == TransactionStatus.COMPLETED and new_status == TransactionStatus.REFUNDED


class DateRangePreset(str, Enum):
    ALL = "all"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    CUSTOM = "custom"


class Transaction(CamelModel):
    """서버가 부여한 불변 거래 기록. 부호는 저장되지 않고 타입으로 결정됨"""

    model_config = ConfigDict(frozen=True)

    id: str
    transaction_type: TransactionType
    coin_amount: int = Field(..., gt=0)
    rupee_amount: Optional[Decimal] = None
    status: TransactionStatus
    related_content_type: Optional[str] = None
    related_content_id: Optional[str] = None
    payment_id: Optional[str] = None
    description: str = ""
    created_at: datetime

    @property
    def signed_amount(self) -> int:
        return self.coin_amount if self.transaction_type.is_credit else -self.coin_amount

    @property
    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING


class LedgerFilter(CamelModel):
    """거래 내역 필터 - 필터가 바뀌면 1페이지로 돌아감"""

    model_config = ConfigDict(frozen=True)

    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    date_range: DateRangePreset = DateRangePreset.ALL
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Start date must be before or equal to end date")
        return self


class LedgerPage(CamelModel):
    """GET /api/coins/transactions 응답"""

    transactions: List[Transaction] = Field(default_factory=list)
    pagination: PaginationCursor


class LedgerViewSnapshot(CamelModel):
    """UI에 표시되는 거래 내역 뷰 상태"""

    filter: LedgerFilter
    page: int
    limit: int
    search: str = ""
    transactions: List[Transaction] = Field(default_factory=list)
    pagination: Optional[PaginationCursor] = None
    loading: bool = False
    error: Optional[str] = Field(None, description="초기 로딩 실패 - 재시도 필요")
    stale_error: Optional[str] = Field(
        None, description="백그라운드 갱신 실패 - 이전 페이지를 계속 표시"
    )
    can_retry: bool = False


class LedgerPageRequest(CamelModel):
    page: int = Field(..., ge=1)


class LedgerSearchRequest(CamelModel):
    search: str = Field("", max_length=200)
