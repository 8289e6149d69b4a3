from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from walletapi.config import Settings
from walletapi.schemas.auth import ErrorCode
from walletapi.schemas.coins import CoinPackageCatalog
from walletapi.schemas.pagination import PaginationCursor
from walletapi.schemas.payments import PaymentConfirmation
from walletapi.schemas.rewards import RewardsResponse
from walletapi.schemas.transactions import LedgerFilter, LedgerPage, Transaction

logger = logging.getLogger(__name__)


class PlatformAPIError(Exception):
    """플랫폼 백엔드 연동 오류

    network=True 는 타임아웃/연결 실패/5xx 같은 전송 계층 문제이고,
    network=False 는 백엔드가 요청을 거절한 비즈니스 오류입니다.
    """

    def __init__(
        self,
        status_code: int,
        error_code: ErrorCode,
        message: str,
        network: bool = False,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.network = network
        super().__init__(message)


class PlatformAPIClient:
    """플랫폼 REST 백엔드 클라이언트

    카탈로그/잔액/거래내역/리워드 조회는 네트워크 오류 시 지수 백오프로 재시도합니다.
    결제 주문 생성과 검증은 중복 결제를 막기 위해 절대 자동 재시도하지 않습니다.
    """

    _PACKAGES_PATH = "/api/coins/packages"
    _TRANSACTIONS_PATH = "/api/coins/transactions"
    _BALANCE_PATH = "/api/wallet/balance"
    _REWARDS_PATH = "/api/wallet/rewards"
    _CREATE_ORDER_PATH = "/api/payments/create-order"
    _VERIFY_PATH = "/api/payments/verify"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.PLATFORM_API_BASE_URL.rstrip("/")
        self._timeout = httpx.Timeout(settings.PLATFORM_API_TIMEOUT_SECONDS, connect=5.0)
        self._retry_count = max(settings.PLATFORM_API_RETRY_COUNT, 1)
        self._backoff_seconds = settings.PLATFORM_API_RETRY_BACKOFF_SECONDS
        self._currency = settings.CHECKOUT_CURRENCY
        self._transport = transport

        # HTTP 클라이언트 재사용 (연결 풀 유지)
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                )
            return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        retry: bool = False,
    ) -> Any:
        attempts = self._retry_count if retry else 1
        for attempt in range(attempts):
            try:
                return await self._send(method, path, token, params=params, json=json)
            except PlatformAPIError as exc:
                if not exc.network or attempt + 1 >= attempts:
                    raise
                delay = self._backoff_seconds * (2 ** attempt)
                logger.warning(
                    f"{method} {path} failed ({exc.message}), retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                await asyncio.sleep(delay)

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        client = await self._get_client()
        try:
            response = await client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise PlatformAPIError(
                status_code=504,
                error_code=ErrorCode.PLATFORM_TIMEOUT,
                message="Request timed out. Please try again.",
                network=True,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("Platform request error: %s", exc)
            raise PlatformAPIError(
                status_code=503,
                error_code=ErrorCode.PLATFORM_UNAVAILABLE,
                message="Network error. Please check your connection.",
                network=True,
            ) from exc

        if response.status_code >= 500:
            raise PlatformAPIError(
                status_code=503,
                error_code=ErrorCode.PLATFORM_UNAVAILABLE,
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
                network=True,
            )
        if response.status_code >= 400:
            raise PlatformAPIError(
                status_code=response.status_code,
                error_code=ErrorCode.PLATFORM_REJECTED,
                message=self._error_message(response),
            )

        try:
            return response.json() if response.content else {}
        except ValueError as exc:
            raise PlatformAPIError(
                status_code=502,
                error_code=ErrorCode.PLATFORM_BAD_RESPONSE,
                message="Invalid response from wallet service",
            ) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            if error:
                return str(error)
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    @staticmethod
    def _bad_response(exc: Exception) -> PlatformAPIError:
        logger.error("Platform response parse failed: %s", exc)
        return PlatformAPIError(
            status_code=502,
            error_code=ErrorCode.PLATFORM_BAD_RESPONSE,
            message="Invalid response from wallet service",
        )

    # =========================================================================
    # Catalog / balance
    # =========================================================================

    async def get_coin_packages(self, token: str) -> CoinPackageCatalog:
        payload = await self._request("GET", self._PACKAGES_PATH, token, retry=True)
        try:
            return CoinPackageCatalog.model_validate(
                {"packages": (payload or {}).get("packages") or []}
            )
        except (PydanticValidationError, AttributeError) as exc:
            raise self._bad_response(exc) from exc

    async def get_balance(self, token: str) -> Dict[str, Any]:
        """{balance, lastUpdated, pendingTransactions}"""
        payload = await self._request("GET", self._BALANCE_PATH, token, retry=True)
        try:
            balance = int(payload["balance"])
        except (KeyError, TypeError, ValueError) as exc:
            raise self._bad_response(exc) from exc

        last_updated = payload.get("lastUpdated")
        try:
            last_updated = datetime.fromisoformat(str(last_updated).replace("Z", "+00:00")) if last_updated else None
        except ValueError:
            last_updated = None
        return {
            "balance": balance,
            "last_updated": last_updated,
            "pending_transactions": int(payload.get("pendingTransactions") or 0),
        }

    # =========================================================================
    # Ledger
    # =========================================================================

    async def list_transactions(
        self,
        token: str,
        ledger_filter: LedgerFilter,
        page: int,
        limit: int,
    ) -> LedgerPage:
        """거래 내역 한 페이지 조회 (항상 createdAt 내림차순 요청)"""
        params: Dict[str, Any] = {
            "page": page,
            "limit": limit,
            "sortBy": "createdAt",
            "sortOrder": "desc",
        }
        if ledger_filter.type is not None:
            params["type"] = ledger_filter.type.value
        if ledger_filter.status is not None:
            params["status"] = ledger_filter.status.value
        if ledger_filter.start_date:
            params["startDate"] = ledger_filter.start_date.isoformat()
        if ledger_filter.end_date:
            params["endDate"] = ledger_filter.end_date.isoformat()

        payload = await self._request(
            "GET", self._TRANSACTIONS_PATH, token, params=params, retry=True
        )
        try:
            transactions = [
                Transaction.model_validate(item)
                for item in (payload.get("transactions") or [])
            ]
            raw_pagination = payload.get("pagination") or {}
            total = int(raw_pagination.get("total", payload.get("total", len(transactions))))
        except (PydanticValidationError, AttributeError, TypeError, ValueError) as exc:
            raise self._bad_response(exc) from exc

        return LedgerPage(
            transactions=transactions,
            pagination=PaginationCursor.compute(page=page, limit=limit, total=total),
        )

    # =========================================================================
    # Payments (재시도 금지)
    # =========================================================================

    async def create_payment_order(
        self, token: str, amount: Decimal, coins: int
    ) -> Dict[str, Any]:
        """{orderId, amount(paise), currency, keyId}"""
        payload = await self._request(
            "POST",
            self._CREATE_ORDER_PATH,
            token,
            json={"amount": float(amount), "coins": coins, "currency": self._currency},
        )
        if not isinstance(payload, dict) or not payload.get("orderId"):
            raise self._bad_response(ValueError(f"missing orderId: {payload!r}"))
        return payload

    async def verify_payment(self, token: str, confirmation: PaymentConfirmation) -> bool:
        payload = await self._request(
            "POST",
            self._VERIFY_PATH,
            token,
            json=confirmation.model_dump(by_alias=True),
        )
        return bool((payload or {}).get("success"))

    # =========================================================================
    # Rewards
    # =========================================================================

    async def get_rewards(self, token: str) -> RewardsResponse:
        payload = await self._request("GET", self._REWARDS_PATH, token, retry=True)
        try:
            return RewardsResponse.model_validate(payload or {})
        except PydanticValidationError as exc:
            raise self._bad_response(exc) from exc

    async def claim_reward(self, token: str, task_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST", self._REWARDS_PATH, token, json={"taskId": task_id}
        )
