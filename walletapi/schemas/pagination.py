import math

from pydantic import ConfigDict, Field

from walletapi.schemas.base import CamelModel


class PaginationCursor(CamelModel):
    """거래 내역 한 페이지에 대한 위치 정보 - 매 조회마다 새로 계산되며 수정되지 않음"""

    model_config = ConfigDict(frozen=True)

    page: int = Field(1, ge=1, description="현재 페이지 (1부터 시작)")
    limit: int = Field(..., ge=1, description="페이지당 항목 수")
    total: int = Field(0, ge=0, description="전체 항목 수")
    total_pages: int = Field(0, ge=0, description="전체 페이지 수")
    has_more: bool = Field(False, description="다음 페이지 존재 여부")

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> "PaginationCursor":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_more=page < total_pages,
        )

