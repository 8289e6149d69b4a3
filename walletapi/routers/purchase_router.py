"""
코인 구매 API 라우터

- GET /coins/packages: 코인 패키지 카탈로그
- POST /purchases: 패키지 구매 플로우 열기
- POST /purchases/topup: 충전 플로우 열기 (고정 티어 / 직접 입력)
- GET /purchases/{session_id}: 세션 상태 (wait=true 면 결제 종료까지 대기)
- PUT /purchases/{session_id}/selection: 선택 변경
- POST /purchases/{session_id}/confirm: 결제 시작
- POST /purchases/{session_id}/retry: 에러 -> 선택 단계
- POST /purchases/{session_id}/reload: 카탈로그 전체 재조회
- DELETE /purchases/{session_id}: 플로우 닫기 (결제 중에는 무시)

세션 내부 에러는 HTTP 에러가 아니라 스냅샷의 error / validationMessage 로 전달됩니다.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from walletapi.core.auth import get_current_user
from walletapi.deps import get_catalog_service, get_purchase_manager
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.coins import CoinPackageCatalog
from walletapi.schemas.purchase import (
    OpenPurchaseRequest,
    PurchaseSelection,
    PurchaseSessionSnapshot,
)
from walletapi.services.catalog_service import CatalogService
from walletapi.services.purchase_service import PurchaseSessionManager

router = APIRouter(tags=["purchases"])


@router.get("/coins/packages", response_model=CoinPackageCatalog)
async def get_coin_packages(
    current_user: WalletUser = Depends(get_current_user),
    catalog_service: CatalogService = Depends(get_catalog_service),
) -> CoinPackageCatalog:
    """코인 패키지 목록 (빈 목록도 정상 응답, 실패 시 503 CATALOG_001)"""
    return await catalog_service.load_packages(current_user.token)


@router.post(
    "/purchases",
    response_model=PurchaseSessionSnapshot,
    status_code=status.HTTP_201_CREATED,
)
async def open_purchase(
    request: Optional[OpenPurchaseRequest] = Body(None),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """
    패키지 구매 플로우 열기

    카탈로그 조회와 결제 SDK 로딩을 동시에 시작하고, 카탈로그 결과가 나오면
    selecting 또는 error(reload) 상태로 응답합니다.
    """
    return await purchase_manager.open_package_flow(current_user, request)


@router.post(
    "/purchases/topup",
    response_model=PurchaseSessionSnapshot,
    status_code=status.HTTP_201_CREATED,
)
async def open_topup(
    request: Optional[OpenPurchaseRequest] = Body(None),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """충전 플로우 열기"""
    return await purchase_manager.open_topup_flow(current_user, request)


@router.get("/purchases/{session_id}", response_model=PurchaseSessionSnapshot)
async def get_purchase(
    session_id: str = Path(..., description="구매 세션 ID"),
    wait: bool = Query(False, description="결제 진행 중이면 결과가 나올 때까지 대기"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    flow = purchase_manager.get(session_id, current_user)
    if wait:
        return await flow.wait_for_outcome()
    return flow.snapshot()


@router.put("/purchases/{session_id}/selection", response_model=PurchaseSessionSnapshot)
async def update_selection(
    selection: PurchaseSelection,
    session_id: str = Path(..., description="구매 세션 ID"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """선택 변경 - 잘못된 선택은 validationMessage 로 표시되고 상태는 그대로"""
    flow = purchase_manager.get(session_id, current_user)
    return flow.select(selection)


@router.post("/purchases/{session_id}/confirm", response_model=PurchaseSessionSnapshot)
async def confirm_purchase(
    session_id: str = Path(..., description="구매 세션 ID"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """
    결제 시작

    HTTP Status:
        200: processing (checkout 정보 포함) 또는 selecting + validationMessage
        409: 이미 결제 진행 중이거나 selecting 상태가 아님
    """
    flow = purchase_manager.get(session_id, current_user)
    return await flow.confirm()


@router.post("/purchases/{session_id}/retry", response_model=PurchaseSessionSnapshot)
async def retry_purchase(
    session_id: str = Path(..., description="구매 세션 ID"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """에러 -> 선택 단계. 이전 결제를 다시 실행하지 않음"""
    flow = purchase_manager.get(session_id, current_user)
    return await flow.retry()


@router.post("/purchases/{session_id}/reload", response_model=PurchaseSessionSnapshot)
async def reload_purchase(
    session_id: str = Path(..., description="구매 세션 ID"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    flow = purchase_manager.get(session_id, current_user)
    return await flow.reload()


@router.delete("/purchases/{session_id}", response_model=PurchaseSessionSnapshot)
async def close_purchase(
    session_id: str = Path(..., description="구매 세션 ID"),
    current_user: WalletUser = Depends(get_current_user),
    purchase_manager: PurchaseSessionManager = Depends(get_purchase_manager),
) -> PurchaseSessionSnapshot:
    """플로우 닫기 - 결제 중이면 무시되고 closed=false 로 응답"""
    return purchase_manager.close(session_id, current_user)
