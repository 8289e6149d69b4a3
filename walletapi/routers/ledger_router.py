"""
거래 내역 API 라우터

- GET /transactions: 현재 화면 조회 (쿼리로 필터/페이지 지정 가능)
- PUT /transactions/filter: 필터 변경 (1페이지로 이동)
- PUT /transactions/page: 페이지 이동 (필터 유지)
- PUT /transactions/search: 현재 페이지 내 검색
- POST /transactions/refresh: 같은 조건으로 재조회
- GET /transactions/export: CSV 내보내기
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import ValidationError as PydanticValidationError

from walletapi.core.auth import get_current_user
from walletapi.core.exceptions import ValidationError
from walletapi.deps import get_ledger_service
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.transactions import (
    DateRangePreset,
    LedgerFilter,
    LedgerPageRequest,
    LedgerSearchRequest,
    LedgerViewSnapshot,
    TransactionStatus,
    TransactionType,
)
from walletapi.services.ledger_service import LedgerService

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _build_filter(
    transaction_type: Optional[TransactionType],
    transaction_status: Optional[TransactionStatus],
    date_range: Optional[DateRangePreset],
    start_date: Optional[date],
    end_date: Optional[date],
) -> Optional[LedgerFilter]:
    """쿼리 파라미터가 하나도 없으면 None (현재 필터 유지)"""
    if not any([transaction_type, transaction_status, date_range, start_date, end_date]):
        return None
    if (start_date or end_date) and date_range is None:
        date_range = DateRangePreset.CUSTOM
    try:
        return LedgerFilter(
            type=transaction_type,
            status=transaction_status,
            date_range=date_range or DateRangePreset.ALL,
            start_date=start_date,
            end_date=end_date,
        )
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid transaction filter",
            details={"errors": [err["msg"] for err in e.errors()]},
        )


@router.get("", response_model=LedgerViewSnapshot)
async def list_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    date_range: Optional[DateRangePreset] = Query(None, alias="dateRange"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: Optional[int] = Query(None, ge=1, description="페이지 (1부터)"),
    limit: Optional[int] = Query(None, ge=1, le=100, description="페이지 크기"),
    search: Optional[str] = Query(None, max_length=200, description="현재 페이지 내 검색어"),
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerViewSnapshot:
    """
    거래 내역 조회 - createdAt 내림차순

    필터가 바뀌면 page 와 상관없이 1페이지로 이동합니다. 조회 실패 시
    이전 데이터가 있으면 staleError, 없으면 error 가 채워집니다.
    """
    ledger_filter = _build_filter(
        transaction_type, transaction_status, date_range, start_date, end_date
    )
    if search is not None:
        ledger_service.set_search(current_user, search)
    return await ledger_service.list(current_user, ledger_filter, page, limit)


@router.put("/filter", response_model=LedgerViewSnapshot)
async def update_filter(
    ledger_filter: LedgerFilter,
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerViewSnapshot:
    return await ledger_service.set_filter(current_user, ledger_filter)


@router.put("/page", response_model=LedgerViewSnapshot)
async def update_page(
    request: LedgerPageRequest,
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerViewSnapshot:
    return await ledger_service.set_page(current_user, request.page)


@router.put("/search", response_model=LedgerViewSnapshot)
async def update_search(
    request: LedgerSearchRequest,
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerViewSnapshot:
    """서버 요청 없이 현재 페이지를 id / 설명 / 결제 ID 로 검색"""
    return ledger_service.set_search(current_user, request.search)


@router.post("/refresh", response_model=LedgerViewSnapshot)
async def refresh_transactions(
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerViewSnapshot:
    return await ledger_service.refresh(current_user)


@router.get("/export")
async def export_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    date_range: Optional[DateRangePreset] = Query(None, alias="dateRange"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    current_user: WalletUser = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> Response:
    """
    CSV 내보내기 - 쿼리 필터가 없으면 현재 화면의 필터 사용

    HTTP Status:
        200: text/csv (Content-Disposition 에 파일명)
        502: 조회 실패 (LEDGER_001)
    """
    ledger_filter = _build_filter(
        transaction_type, transaction_status, date_range, start_date, end_date
    )
    filename, content = await ledger_service.export(current_user, ledger_filter)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
