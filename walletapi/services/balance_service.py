import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fastapi import status

from walletapi.core.exceptions import BaseAPIException
from walletapi.providers.platform.client import PlatformAPIClient, PlatformAPIError
from walletapi.schemas.auth import ErrorCode, WalletUser
from walletapi.schemas.wallet import WalletBalanceSnapshot
from walletapi.utils.coin_utils import format_coins, format_coins_with_rupees

logger = logging.getLogger(__name__)

BalanceListener = Callable[[WalletBalanceSnapshot], None]


class BalanceStore:
    """사용자 1명의 공유 잔액 저장소

    표시 잔액 = 서버 확정값(balance) + 낙관적 증가분(optimistic_delta).
    잔액을 바꾸는 경로는 서버 조회 결과 반영과 낙관적 적립/취소 둘뿐이며,
    변경될 때마다 구독자(위젯, SSE 스트림)에게 스냅샷을 알립니다.
    """

    _QUEUE_SIZE = 16

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.balance: Optional[int] = None
        self.optimistic_delta = 0
        self.last_updated: Optional[datetime] = None
        self.pending_transactions = 0
        self.is_stale = False
        # 서버 확정값이 반영될 때마다 증가 (이전 적립분이 이미 버려졌는지 판별)
        self._credit_epoch = 0
        self._listeners: List[BalanceListener] = []
        self._queues: List[asyncio.Queue] = []

    @property
    def loaded(self) -> bool:
        return self.balance is not None

    @property
    def credit_epoch(self) -> int:
        return self._credit_epoch

    @property
    def displayed(self) -> int:
        return (self.balance or 0) + self.optimistic_delta

    def snapshot(self) -> WalletBalanceSnapshot:
        displayed = self.displayed
        return WalletBalanceSnapshot(
            balance=self.balance or 0,
            optimistic_delta=self.optimistic_delta,
            displayed=displayed,
            last_updated=self.last_updated,
            pending_transactions=self.pending_transactions,
            is_stale=self.is_stale,
            formatted=format_coins(displayed),
            formatted_with_rupees=format_coins_with_rupees(displayed),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_authoritative(
        self,
        balance: int,
        last_updated: Optional[datetime] = None,
        pending_transactions: int = 0,
    ) -> None:
        """서버 확정 잔액 반영 - 낙관적 증가분은 버림"""
        if self.optimistic_delta:
            logger.info(
                f"Discarding optimistic delta {self.optimistic_delta} for user {self.user_id} "
                f"(authoritative balance {balance})"
            )
        self.balance = balance
        self.optimistic_delta = 0
        self._credit_epoch += 1
        self.last_updated = last_updated or datetime.now(timezone.utc)
        self.pending_transactions = pending_transactions
        self.is_stale = False
        self._notify()

    def apply_optimistic_credit(self, coins: int) -> int:
        """즉시 적립 (동시에 발생한 적립은 모두 더해짐)"""
        if coins <= 0:
            raise ValueError(f"Optimistic credit must be positive: {coins}")
        self.optimistic_delta += coins
        logger.info(
            f"Optimistic credit +{coins} for user {self.user_id} "
            f"(delta={self.optimistic_delta}, displayed={self.displayed})"
        )
        self._notify()
        return self.displayed

    def rollback_optimistic_credit(self, coins: int, epoch: Optional[int] = None) -> int:
        """적립 취소

        epoch 는 적립 직후의 credit_epoch 입니다. 그 사이 서버 확정값이 반영되어
        적립분이 이미 버려졌다면 아무것도 하지 않습니다.
        """
        if epoch is not None and epoch != self._credit_epoch:
            logger.info(
                f"Skipping rollback of {coins} for user {self.user_id}: "
                f"optimistic delta already replaced by authoritative balance"
            )
            return self.displayed
        self.optimistic_delta -= coins
        logger.warning(
            f"Rolled back optimistic credit {coins} for user {self.user_id} "
            f"(delta={self.optimistic_delta})"
        )
        self._notify()
        return self.displayed

    def mark_stale(self) -> None:
        if not self.is_stale:
            self.is_stale = True
            self._notify()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_listener(self, listener: BalanceListener) -> Callable[[], None]:
        """변경 알림 등록. 반환값을 호출하면 해제"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._QUEUE_SIZE)
        queue.put_nowait(self.snapshot())
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._queues)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Balance listener failed for user {self.user_id}")
        for queue in list(self._queues):
            if queue.full():
                # 느린 구독자는 가장 오래된 스냅샷을 버림
                queue.get_nowait()
            queue.put_nowait(snapshot)


class BalanceService:
    """사용자별 BalanceStore 레지스트리 + 서버 잔액 조회"""

    def __init__(self, platform_client: PlatformAPIClient):
        self.platform_client = platform_client
        self._stores: Dict[str, BalanceStore] = {}

    def store_for(self, user_id: str) -> BalanceStore:
        store = self._stores.get(user_id)
        if store is None:
            store = BalanceStore(user_id)
            self._stores[user_id] = store
        return store

    async def get_balance(self, user: WalletUser) -> WalletBalanceSnapshot:
        """표시 잔액 조회 (아직 서버 값이 없으면 먼저 조회)"""
        store = self.store_for(user.id)
        if not store.loaded:
            return await self.refresh(user)
        return store.snapshot()

    async def refresh(self, user: WalletUser) -> WalletBalanceSnapshot:
        """서버 확정 잔액 재조회

        이전 값이 있으면 실패해도 그 값을 stale 상태로 계속 보여주고,
        한 번도 조회하지 못했다면 에러를 반환합니다.

        Raises:
            BaseAPIException: 최초 조회 실패 (503)
        """
        store = self.store_for(user.id)
        try:
            result = await self.platform_client.get_balance(user.token)
        except PlatformAPIError as e:
            logger.warning(f"Failed to refresh balance for user {user.id}: {e.message}")
            if store.loaded:
                store.mark_stale()
                return store.snapshot()
            raise BaseAPIException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                error_code=ErrorCode.PLATFORM_UNAVAILABLE.value,
                message="Failed to load wallet balance",
                details={"reason": e.message, "retryable": True},
            )

        store.set_authoritative(
            balance=result["balance"],
            last_updated=result.get("last_updated"),
            pending_transactions=result.get("pending_transactions", 0),
        )
        logger.info(f"Balance refreshed for user {user.id}: {store.balance}")
        return store.snapshot()
