import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest

from walletapi.config import Settings
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.providers.platform.client import PlatformAPIError
from walletapi.schemas.auth import ErrorCode, WalletUser
from walletapi.schemas.coins import CoinPackageCatalog
from walletapi.schemas.pagination import PaginationCursor
from walletapi.schemas.rewards import RewardsResponse
from walletapi.schemas.transactions import LedgerPage, Transaction

SCRIPT_URL = "https://checkout.example.test/v1/checkout.js"


class FakePlatformClient:
    """PlatformAPIClient 와 같은 인터페이스의 메모리 구현"""

    def __init__(self):
        self.packages: List[dict] = []
        self.packages_error: Optional[PlatformAPIError] = None
        self.packages_gate: Optional[asyncio.Event] = None

        self.balance = 0
        self.balance_error: Optional[PlatformAPIError] = None
        self.balance_calls = 0

        self.transactions: List[Transaction] = []
        self.list_error: Optional[PlatformAPIError] = None
        self.list_gates: Dict[Optional[str], asyncio.Event] = {}
        self.list_calls: List[dict] = []
        self.shuffle_pages = False

        self.order_count = 0
        self.create_order_error: Optional[PlatformAPIError] = None
        self.verify_result = True
        self.verify_calls = 0

        self.rewards: dict = {"tasks": [], "stats": {}}
        self.claim_error: Optional[PlatformAPIError] = None
        self.claim_calls: List[str] = []

    async def get_coin_packages(self, token: str) -> CoinPackageCatalog:
        if self.packages_gate is not None:
            await self.packages_gate.wait()
        if self.packages_error is not None:
            raise self.packages_error
        return CoinPackageCatalog.model_validate({"packages": self.packages})

    async def get_balance(self, token: str) -> dict:
        self.balance_calls += 1
        if self.balance_error is not None:
            raise self.balance_error
        return {"balance": self.balance, "last_updated": None, "pending_transactions": 0}

    async def list_transactions(self, token, ledger_filter, page, limit) -> LedgerPage:
        type_key = ledger_filter.type.value if ledger_filter.type else None
        self.list_calls.append(
            {"filter": ledger_filter, "page": page, "limit": limit}
        )
        gate = self.list_gates.get(type_key)
        if gate is not None:
            await gate.wait()
        if self.list_error is not None:
            raise self.list_error

        matching = [
            tx
            for tx in self.transactions
            if (ledger_filter.type is None or tx.transaction_type == ledger_filter.type)
            and (ledger_filter.status is None or tx.status == ledger_filter.status)
        ]
        matching.sort(key=lambda tx: tx.created_at, reverse=True)
        start = (page - 1) * limit
        items = matching[start:start + limit]
        if self.shuffle_pages:
            items = list(reversed(items))
        return LedgerPage(
            transactions=items,
            pagination=PaginationCursor.compute(page=page, limit=limit, total=len(matching)),
        )

    async def create_payment_order(self, token: str, amount: Decimal, coins: int) -> dict:
        if self.create_order_error is not None:
            raise self.create_order_error
        self.order_count += 1
        return {
            "orderId": f"order_{self.order_count}",
            "amount": int(amount * 100),
            "currency": "INR",
            "keyId": "rzp_test_key",
        }

    async def verify_payment(self, token: str, confirmation) -> bool:
        self.verify_calls += 1
        return self.verify_result

    async def get_rewards(self, token: str) -> RewardsResponse:
        return RewardsResponse.model_validate(self.rewards)

    async def claim_reward(self, token: str, task_id: str) -> dict:
        self.claim_calls.append(task_id)
        if self.claim_error is not None:
            raise self.claim_error
        return {"success": True}

    async def close(self) -> None:
        pass


def network_error(message: str = "Network error. Please check your connection.") -> PlatformAPIError:
    return PlatformAPIError(
        status_code=503,
        error_code=ErrorCode.PLATFORM_UNAVAILABLE,
        message=message,
        network=True,
    )


def rejected_error(message: str, status_code: int = 400) -> PlatformAPIError:
    return PlatformAPIError(
        status_code=status_code,
        error_code=ErrorCode.PLATFORM_REJECTED,
        message=message,
    )


def make_transaction(
    tx_id: str,
    transaction_type: str,
    coin_amount: int,
    minutes_ago: int,
    status: str = "completed",
    description: str = "",
    rupee_amount: Optional[str] = None,
) -> Transaction:
    created_at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return Transaction.model_validate(
        {
            "id": tx_id,
            "transactionType": transaction_type,
            "coinAmount": coin_amount,
            "rupeeAmount": rupee_amount,
            "status": status,
            "description": description,
            "createdAt": created_at.isoformat(),
        }
    )


def script_transport(status_code: int = 200, counter: Optional[list] = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if counter is not None:
            counter.append(str(request.url))
        return httpx.Response(status_code, text="/* checkout */")

    return httpx.MockTransport(handler)


@pytest.fixture
def settings():
    """테스트용 설정 (짧은 지연/타임아웃)"""
    return Settings(
        PLATFORM_API_BASE_URL="http://platform.test",
        PLATFORM_API_RETRY_BACKOFF_SECONDS=0.0,
        CHECKOUT_SCRIPT_URL=SCRIPT_URL,
        CHECKOUT_KEY_ID="rzp_test_key",
        CHECKOUT_SDK_TIMEOUT_SECONDS=1.0,
        CHECKOUT_PAYMENT_TIMEOUT_SECONDS=30.0,
        PURCHASE_SUCCESS_CLOSE_DELAY_SECONDS=0.05,
        BALANCE_REFRESH_AFTER_SUCCESS=True,
    )


@pytest.fixture
def platform():
    return FakePlatformClient()


@pytest.fixture
def gateway(settings, platform):
    return CheckoutGateway(settings, platform, transport=script_transport())


@pytest.fixture
def user():
    return WalletUser(
        id="user-1",
        token="token-1",
        name="Asha Rao",
        email="asha@example.com",
        contact="9999999999",
    )
