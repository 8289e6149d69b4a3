"""
지갑 잔액 API 라우터

- GET /wallet/balance: 표시 잔액 (서버 확정값 + 낙관적 증가분)
- POST /wallet/balance/refresh: 서버 확정 잔액 재조회 (낙관적 증가분 제거)
- GET /wallet/balance/stream: 잔액 변경 SSE 스트림

여러 위젯이 같은 잔액 저장소를 구독하므로 위젯별로 잔액을 따로 조회하지 않습니다.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from walletapi.core.auth import get_current_user
from walletapi.deps import get_balance_service
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.wallet import WalletBalanceSnapshot
from walletapi.services.balance_service import BalanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])

KEEPALIVE_SECONDS = 15.0


@router.get("/balance", response_model=WalletBalanceSnapshot)
async def get_balance(
    current_user: WalletUser = Depends(get_current_user),
    balance_service: BalanceService = Depends(get_balance_service),
) -> WalletBalanceSnapshot:
    """
    내 코인 잔액 조회

    Returns:
        WalletBalanceSnapshot: balance / optimisticDelta / displayed / isStale

    HTTP Status:
        200: 성공 (갱신 실패 시 isStale=true 로 이전 값 반환)
        401: 인증 정보 없음
        503: 최초 조회 실패
    """
    return await balance_service.get_balance(current_user)


@router.post("/balance/refresh", response_model=WalletBalanceSnapshot)
async def refresh_balance(
    current_user: WalletUser = Depends(get_current_user),
    balance_service: BalanceService = Depends(get_balance_service),
) -> WalletBalanceSnapshot:
    """서버 확정 잔액 재조회 - 적용 중인 낙관적 증가분은 버려짐"""
    return await balance_service.refresh(current_user)


@router.get("/balance/stream")
async def stream_balance(
    request: Request,
    current_user: WalletUser = Depends(get_current_user),
    balance_service: BalanceService = Depends(get_balance_service),
) -> StreamingResponse:
    """잔액 변경 SSE 스트림 (연결 직후 현재 스냅샷 1건 전송)"""
    store = balance_service.store_for(current_user.id)

    async def balance_events():
        queue = store.subscribe()
        logger.info(f"Balance stream opened for user {current_user.id}")
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: balance\ndata: {snapshot.model_dump_json(by_alias=True)}\n\n"
        finally:
            store.unsubscribe(queue)
            logger.info(f"Balance stream closed for user {current_user.id}")

    return StreamingResponse(
        balance_events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
