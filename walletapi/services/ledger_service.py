import asyncio
import logging
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from walletapi.config import Settings
from walletapi.core.exceptions import LedgerFetchError, ValidationError
from walletapi.providers.platform.client import PlatformAPIClient, PlatformAPIError
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.pagination import PaginationCursor
from walletapi.schemas.transactions import (
    LedgerFilter,
    LedgerPage,
    LedgerViewSnapshot,
    Transaction,
    TransactionStatus,
)
from walletapi.utils.coin_utils import coins_to_rupees
from walletapi.utils.date_utils import export_filename, resolve_date_range

logger = logging.getLogger(__name__)

EXPORT_DELIMITER = ","
EXPORT_DELIMITER_REPLACEMENT = ";"
# 따옴표는 CSV 리더가 인용 필드로 해석하므로 작은따옴표로 바꿈
EXPORT_QUOTE_REPLACEMENT = "'"
EXPORT_HEADERS = ["Date", "Type", "Coins", "Rupees", "Status", "Description"]


class LedgerView:
    """사용자 1명의 거래 내역 화면 상태

    요청마다 attempt 를 증가시키고, 응답 시점의 attempt 와 다르면 그 응답은 버립니다.
    """

    def __init__(self, user_id: str, limit: int):
        self.user_id = user_id
        self.filter = LedgerFilter()
        self.page = 1
        self.limit = limit
        self.search = ""
        self.transactions: List[Transaction] = []
        self.pagination: Optional[PaginationCursor] = None
        self.loading = False
        self.error: Optional[str] = None
        self.stale_error: Optional[str] = None
        self.attempt = 0
        self.loaded = False
        self.statuses: Dict[str, TransactionStatus] = {}

    def visible_transactions(self) -> List[Transaction]:
        term = self.search.strip().lower()
        if not term:
            return list(self.transactions)
        return [
            tx
            for tx in self.transactions
            if term in tx.id.lower()
            or term in tx.description.lower()
            or term in (tx.payment_id or "").lower()
        ]

    def snapshot(self) -> LedgerViewSnapshot:
        return LedgerViewSnapshot(
            filter=self.filter,
            page=self.page,
            limit=self.limit,
            search=self.search,
            transactions=self.visible_transactions(),
            pagination=self.pagination,
            loading=self.loading,
            error=self.error,
            stale_error=self.stale_error,
            can_retry=self.error is not None or self.stale_error is not None,
        )


class LedgerService:
    """거래 내역 조회/필터/페이지/내보내기"""

    def __init__(
        self,
        settings: Settings,
        platform_client: PlatformAPIClient,
        today: Callable[[], date] = date.today,
    ):
        self.settings = settings
        self.platform_client = platform_client
        self.today = today
        self._views: Dict[str, LedgerView] = {}
        self._background: Dict[str, asyncio.Task] = {}

    def view_for(self, user_id: str) -> LedgerView:
        view = self._views.get(user_id)
        if view is None:
            view = LedgerView(user_id, self.settings.LEDGER_DEFAULT_LIMIT)
            self._views[user_id] = view
        return view

    def _clamp_limit(self, limit: Optional[int], view: LedgerView) -> int:
        if limit is None:
            return view.limit
        if limit < 1 or limit > self.settings.LEDGER_MAX_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.LEDGER_MAX_LIMIT}",
                details={"limit": limit},
            )
        return limit

    def effective_filter(self, ledger_filter: LedgerFilter) -> LedgerFilter:
        """날짜 프리셋을 실제 start/end 로 바꾼 필터"""
        start, end = resolve_date_range(
            ledger_filter.date_range,
            self.today(),
            ledger_filter.start_date,
            ledger_filter.end_date,
        )
        return ledger_filter.model_copy(update={"start_date": start, "end_date": end})

    # =========================================================================
    # View operations
    # =========================================================================

    async def get_view(self, user: WalletUser) -> LedgerViewSnapshot:
        """현재 화면 상태 (처음이면 1페이지 조회)"""
        view = self.view_for(user.id)
        if not view.loaded and not view.loading:
            await self._fetch(user, view, background=False)
        return view.snapshot()

    async def list(
        self,
        user: WalletUser,
        ledger_filter: Optional[LedgerFilter] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> LedgerViewSnapshot:
        """필터/페이지 조합 조회

        필터가 바뀌면 page 인자와 상관없이 1페이지로 돌아가고,
        페이지만 바뀌면 기존 필터를 유지합니다.
        """
        view = self.view_for(user.id)
        new_limit = self._clamp_limit(limit, view)
        if page is not None and page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})

        filter_changed = ledger_filter is not None and ledger_filter != view.filter
        limit_changed = new_limit != view.limit
        if filter_changed:
            view.filter = ledger_filter
        view.limit = new_limit

        if filter_changed:
            view.page = 1
        elif page is not None:
            view.page = page
        elif limit_changed:
            view.page = 1

        await self._fetch(user, view, background=False)
        return view.snapshot()

    async def set_filter(self, user: WalletUser, ledger_filter: LedgerFilter) -> LedgerViewSnapshot:
        view = self.view_for(user.id)
        view.filter = ledger_filter
        view.page = 1
        await self._fetch(user, view, background=False)
        return view.snapshot()

    async def set_page(self, user: WalletUser, page: int) -> LedgerViewSnapshot:
        if page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})
        view = self.view_for(user.id)
        view.page = page
        await self._fetch(user, view, background=False)
        return view.snapshot()

    def set_search(self, user: WalletUser, search: str) -> LedgerViewSnapshot:
        """현재 페이지에 대한 클라이언트 측 검색 (서버 요청 없음)"""
        view = self.view_for(user.id)
        view.search = search or ""
        return view.snapshot()

    async def refresh(self, user: WalletUser) -> LedgerViewSnapshot:
        """같은 필터/페이지 재조회. 이전 데이터가 있으면 실패해도 유지"""
        view = self.view_for(user.id)
        await self._fetch(user, view, background=view.loaded)
        return view.snapshot()

    def invalidate(self, user: WalletUser) -> None:
        """구매/보상 이후 화면 갱신 요청 - 열린 화면이 있을 때만 백그라운드 재조회"""
        view = self._views.get(user.id)
        if view is None or not view.loaded:
            return
        running = self._background.get(user.id)
        if running is not None and not running.done():
            running.cancel()
        logger.info(f"Ledger invalidated for user {user.id}, refreshing in background")
        self._background[user.id] = asyncio.ensure_future(
            self._fetch(user, view, background=True)
        )

    # =========================================================================
    # Fetch (fenced)
    # =========================================================================

    async def _fetch(self, user: WalletUser, view: LedgerView, background: bool) -> None:
        view.attempt += 1
        attempt = view.attempt
        requested_filter, requested_page = view.filter, view.page
        view.loading = True

        try:
            result = await self.platform_client.list_transactions(
                user.token,
                self.effective_filter(requested_filter),
                requested_page,
                view.limit,
            )
        except PlatformAPIError as e:
            if attempt != view.attempt:
                logger.info(f"Discarding stale ledger error for user {user.id} (attempt {attempt})")
                return
            view.loading = False
            message = e.message or "Failed to fetch transactions"
            if background:
                view.stale_error = message
                logger.warning(f"Background ledger refresh failed for user {user.id}: {message}")
            else:
                view.error = message
                view.stale_error = None
                view.transactions = []
                view.pagination = None
                logger.error(f"Ledger fetch failed for user {user.id}: {message}")
            return

        if attempt != view.attempt:
            logger.info(
                f"Discarding stale ledger response for user {user.id} "
                f"(attempt {attempt}, current {view.attempt}, filter {requested_filter})"
            )
            return

        view.transactions = self._ordered(result, user.id)
        view.pagination = result.pagination
        view.loading = False
        view.loaded = True
        view.error = None
        view.stale_error = None
        self._check_transitions(view, view.transactions)

    @staticmethod
    def _ordered(result: LedgerPage, user_id: str) -> List[Transaction]:
        """createdAt 내림차순 보장 (같은 시각은 서버 순서 유지)"""
        transactions = list(result.transactions)
        ordered = sorted(transactions, key=lambda tx: tx.created_at, reverse=True)
        if ordered != transactions:
            logger.warning(f"Ledger page for user {user_id} was not ordered by createdAt desc")
        return ordered

    @staticmethod
    def _check_transitions(view: LedgerView, transactions: List[Transaction]) -> None:
        # 현재 페이지에 있는 거래의 상태만 기억
        statuses: Dict[str, TransactionStatus] = {}
        for tx in transactions:
            previous = view.statuses.get(tx.id)
            if previous is not None and not previous.can_transition_to(tx.status):
                logger.warning(
                    f"Unexpected status change for transaction {tx.id}: "
                    f"{previous.value} -> {tx.status.value}"
                )
            statuses[tx.id] = tx.status
        view.statuses = statuses

    # =========================================================================
    # Export
    # =========================================================================

    async def export(
        self, user: WalletUser, ledger_filter: Optional[LedgerFilter] = None
    ) -> Tuple[str, str]:
        """필터에 맞는 전체 거래를 CSV 로 변환

        Returns:
            (파일명, CSV 문자열)

        Raises:
            LedgerFetchError: 조회 실패 (화면 상태는 바뀌지 않음)
        """
        view = self.view_for(user.id)
        target = ledger_filter if ledger_filter is not None else view.filter
        try:
            result = await self.platform_client.list_transactions(
                user.token,
                self.effective_filter(target),
                1,
                self.settings.LEDGER_EXPORT_LIMIT,
            )
        except PlatformAPIError as e:
            logger.error(f"Ledger export failed for user {user.id}: {e.message}")
            raise LedgerFetchError(
                e.message or "Failed to export transactions",
                details={"network": e.network},
            )

        transactions = self._ordered(result, user.id)
        logger.info(f"Exported {len(transactions)} transactions for user {user.id}")
        return export_filename(self.today()), to_csv(transactions)


def _escape(value: str) -> str:
    return (
        value.replace(EXPORT_DELIMITER, EXPORT_DELIMITER_REPLACEMENT)
        .replace('"', EXPORT_QUOTE_REPLACEMENT)
        .replace("\r", " ")
        .replace("\n", " ")
    )


def to_csv(transactions: List[Transaction]) -> str:
    """[Date, Type, Coins, Rupees, Status, Description] 순서의 CSV

    설명의 특수 문자(구분자/따옴표/줄바꿈)는 다른 문자로 바꿔 열 개수를 항상 6개로 유지합니다.
    """
    lines = [EXPORT_DELIMITER.join(EXPORT_HEADERS)]
    for tx in transactions:
        rupees = tx.rupee_amount if tx.rupee_amount is not None else coins_to_rupees(tx.coin_amount)
        row = [
            tx.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            tx.transaction_type.value,
            str(tx.coin_amount),
            f"{rupees:.2f}",
            tx.status.value,
            _escape(tx.description or ""),
        ]
        lines.append(EXPORT_DELIMITER.join(row))
    return "\n".join(lines)

