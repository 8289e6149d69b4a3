import asyncio
from functools import partial
from unittest.mock import Mock

import pytest

from conftest import network_error, script_transport
from walletapi.core.exceptions import ConflictError, NotFoundError
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.payments import GatewayFailure, PaymentConfirmation
from walletapi.schemas.purchase import (
    ErrorAction,
    FlowKind,
    OpenPurchaseRequest,
    PurchaseSelection,
    PurchaseState,
)
from walletapi.services.balance_service import BalanceService
from walletapi.services.catalog_service import CatalogService
from walletapi.services.purchase_service import PackagePurchaseFlow, PurchaseSessionManager

PACKAGES = [
    {"id": "pkg-1", "name": "Starter", "coinAmount": 200, "bonusCoins": 0, "rupeePrice": 10},
    {"id": "pkg-2", "name": "Value", "coinAmount": 500, "bonusCoins": 50, "rupeePrice": 25, "isPopular": True},
]


def confirmation(order_id: str) -> PaymentConfirmation:
    return PaymentConfirmation(
        razorpay_payment_id="pay_1", razorpay_order_id=order_id, razorpay_signature="sig"
    )


def build_flow(settings, platform, gateway, user, identity=None):
    """테스트용 패키지 구매 플로우 + 잔액 서비스 + 완료 기록"""
    balance_service = BalanceService(platform)
    completed = Mock()
    flow = PackagePurchaseFlow(
        session_id="session-1",
        user=user,
        gateway=gateway,
        balance_store=balance_service.store_for(user.id),
        settings=settings,
        identity=identity,
        on_purchase_complete=completed,
        refresh_balance=partial(balance_service.refresh, user),
        catalog_service=CatalogService(platform),
    )
    return flow, balance_service, completed


class TestPackagePurchaseFlow:
    """패키지 구매 상태 머신"""

    def test_successful_purchase_credits_immediately(self, settings, platform, gateway, user):
        """pkg-1 (200 코인, ₹10) 결제 성공 시 즉시 적립 후 자동 종료, 이후 잔액 재조회"""
        # Given
        platform.packages = PACKAGES
        platform.balance = 1000
        flow, balance_service, completed = build_flow(settings, platform, gateway, user)
        store = balance_service.store_for(user.id)

        # When
        async def scenario():
            await balance_service.refresh(user)
            opened = await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            processing = await flow.confirm()
            platform.balance = 1200
            await gateway.complete("order_1", confirmation("order_1"))
            success = flow.snapshot()
            displayed = store.displayed
            await asyncio.sleep(0.2)
            return opened, processing, success, displayed

        opened, processing, success, displayed = asyncio.run(scenario())

        # Then
        assert opened.state == PurchaseState.SELECTING
        assert [p.id for p in opened.packages] == ["pkg-1", "pkg-2"]
        assert processing.state == PurchaseState.PROCESSING
        assert processing.amount == 10
        assert processing.total_coins == 200
        assert processing.checkout.order_id == "order_1"
        assert processing.can_close is False
        assert success.state == PurchaseState.SUCCESS
        assert success.purchased_coins == 200
        assert displayed == 1200
        completed.assert_called_once_with(200)
        # 자동 종료 후 서버 확정값으로 교체
        assert flow.closed is True
        assert flow.state == PurchaseState.IDLE
        assert platform.balance_calls == 2
        assert store.optimistic_delta == 0
        assert store.displayed == 1200

    def test_declined_payment_keeps_balance(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        platform.balance = 1000
        flow, balance_service, completed = build_flow(settings, platform, gateway, user)

        async def scenario():
            await balance_service.refresh(user)
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            await flow.confirm()
            gateway.fail("order_1", GatewayFailure(code="BAD_REQUEST_ERROR", description="Payment was declined"))
            return await flow.wait_for_outcome()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.ERROR
        assert snapshot.error.message == "Payment was declined"
        assert snapshot.error.action == ErrorAction.RETRY
        assert snapshot.can_close is True
        assert balance_service.store_for(user.id).displayed == 1000
        completed.assert_not_called()

    def test_retry_returns_to_selection_without_replaying_payment(
        self, settings, platform, gateway, user
    ):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-2"))
            await flow.confirm()
            gateway.dismiss("order_1")
            retried = await flow.retry()
            orders_after_retry = platform.order_count
            confirmed = await flow.confirm()
            return retried, orders_after_retry, confirmed

        retried, orders_after_retry, confirmed = asyncio.run(scenario())

        assert retried.state == PurchaseState.SELECTING
        assert retried.selected_package_id == "pkg-2"
        assert retried.error is None
        assert orders_after_retry == 1
        assert confirmed.state == PurchaseState.PROCESSING
        assert confirmed.checkout.order_id == "order_2"

    def test_catalog_failure_offers_reload(self, settings, platform, gateway, user):
        platform.packages_error = network_error()
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            failed = await flow.open()
            platform.packages_error = None
            platform.packages = PACKAGES
            recovered = await flow.retry()
            return failed, recovered

        failed, recovered = asyncio.run(scenario())

        assert failed.state == PurchaseState.ERROR
        assert failed.error.action == ErrorAction.RELOAD
        assert failed.error.code == "CATALOG_001"
        assert recovered.state == PurchaseState.SELECTING
        assert len(recovered.packages) == 2

    def test_empty_catalog_is_selectable_but_not_payable(self, settings, platform, gateway, user):
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            return await flow.confirm()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.SELECTING
        assert snapshot.packages == []
        assert snapshot.can_pay is False
        assert snapshot.validation_message == "Please select a coin package"
        assert platform.order_count == 0

    def test_unknown_package_selection(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            return flow.select(PurchaseSelection(package_id="pkg-9"))

        snapshot = asyncio.run(scenario())

        assert snapshot.validation_message == "Selected package is not available"
        assert snapshot.selected_package_id is None

    def test_sdk_failure_blocks_payment(self, settings, platform, user):
        platform.packages = PACKAGES
        gateway = CheckoutGateway(settings, platform, transport=script_transport(status_code=500))
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await asyncio.sleep(0.05)
            flow.select(PurchaseSelection(package_id="pkg-1"))
            return await flow.confirm()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.SELECTING
        assert snapshot.sdk_loaded is False
        assert snapshot.can_pay is False
        assert snapshot.validation_message == "Failed to load payment system"
        assert platform.order_count == 0

    def test_incomplete_profile_blocks_payment(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(
            settings, platform, gateway, user, identity={"name": "", "email": None}
        )

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            return await flow.confirm()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.SELECTING
        assert snapshot.validation_message == "Please complete your profile (name and email) to continue"

    def test_close_is_ignored_while_processing(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            await flow.confirm()
            ignored = flow.close()
            state_after_ignored = flow.state
            gateway.dismiss("order_1")
            return ignored, state_after_ignored, flow.close()

        ignored, state_after_ignored, closed = asyncio.run(scenario())

        assert ignored is False
        assert state_after_ignored == PurchaseState.PROCESSING
        assert closed is True
        assert flow.state == PurchaseState.IDLE

    def test_second_confirm_while_processing_conflicts(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            await flow.confirm()
            with pytest.raises(ConflictError):
                await flow.confirm()

        asyncio.run(scenario())
        assert platform.order_count == 1

    def test_zero_coin_package_is_not_payable(self, settings, platform, gateway, user):
        """지급 코인이 0인 패키지는 selecting 에 머무르고 주문을 만들지 않음"""
        platform.packages = [{"id": "pkg-0", "name": "Empty", "coinAmount": 0, "rupeePrice": 10}]
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-0"))
            return await flow.confirm()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.SELECTING
        assert snapshot.can_pay is False
        assert snapshot.validation_message == "Selected package is not available"
        assert platform.order_count == 0
        assert flow.close() is True

    def test_malformed_order_response_ends_in_error(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def malformed_order(token, amount, coins):
            return {"orderId": "order_x", "amount": "n/a"}

        platform.create_payment_order = malformed_order

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            flow.select(PurchaseSelection(package_id="pkg-1"))
            return await flow.confirm()

        snapshot = asyncio.run(scenario())

        assert snapshot.state == PurchaseState.ERROR
        assert snapshot.error.code == "INITIATION_ERROR"
        assert snapshot.error.action == ErrorAction.RETRY
        assert flow.close() is True

    def test_unexpected_gateway_error_ends_in_error(self, settings, platform, gateway, user):
        """결제 시작 중 예상하지 못한 오류가 나도 processing 에 남지 않음"""
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def broken_initiate(*args, **kwargs):
            raise RuntimeError("checkout adapter crashed")

        async def scenario():
            await flow.open()
            await gateway.load_sdk()
            gateway.initiate_payment = broken_initiate
            flow.select(PurchaseSelection(package_id="pkg-1"))
            failed = await flow.confirm()
            retried = await flow.retry()
            return failed, retried

        failed, retried = asyncio.run(scenario())

        assert failed.state == PurchaseState.ERROR
        assert failed.error.code == "INTERNAL_001"
        assert failed.error.action == ErrorAction.RETRY
        assert retried.state == PurchaseState.SELECTING
        assert retried.selected_package_id == "pkg-1"

    def test_close_during_loading_discards_late_catalog(self, settings, platform, gateway, user):
        """로딩 중 닫으면 늦게 도착한 카탈로그는 반영되지 않음"""
        platform.packages = PACKAGES
        flow, _, _ = build_flow(settings, platform, gateway, user)

        async def scenario():
            platform.packages_gate = asyncio.Event()
            opening = asyncio.ensure_future(flow.open())
            await asyncio.sleep(0.01)
            loading_state = flow.state
            closed = flow.close()
            platform.packages_gate.set()
            snapshot = await opening
            await asyncio.sleep(0.01)
            return loading_state, closed, snapshot

        loading_state, closed, snapshot = asyncio.run(scenario())

        assert loading_state == PurchaseState.LOADING
        assert closed is True
        assert snapshot.state == PurchaseState.IDLE
        assert snapshot.packages == []
        assert flow.packages == []


class TestPurchaseSessionManager:
    """사용자별 구매 세션"""

    def make_manager(self, settings, platform, gateway):
        return PurchaseSessionManager(
            settings=settings,
            catalog_service=CatalogService(platform),
            gateway=gateway,
            balance_service=BalanceService(platform),
        )

    def test_opening_new_flow_closes_previous(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        manager = self.make_manager(settings, platform, gateway)

        async def scenario():
            first = await manager.open_package_flow(user)
            second = await manager.open_topup_flow(user)
            return first, second

        first, second = asyncio.run(scenario())

        assert second.kind == FlowKind.TOPUP
        assert manager.active_sessions == 1
        with pytest.raises(NotFoundError):
            manager.get(first.session_id, user)
        assert manager.get(second.session_id, user).session_id == second.session_id

    def test_other_user_cannot_see_session(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        manager = self.make_manager(settings, platform, gateway)
        other = WalletUser(id="user-2", token="token-2")

        snapshot = asyncio.run(manager.open_package_flow(user))

        with pytest.raises(NotFoundError):
            manager.get(snapshot.session_id, other)

    def test_identity_override(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        manager = self.make_manager(settings, platform, gateway)

        snapshot = asyncio.run(
            manager.open_package_flow(user, OpenPurchaseRequest(email="billing@example.com"))
        )

        flow = manager.get(snapshot.session_id, user)
        assert flow.identity["email"] == "billing@example.com"
        assert flow.identity["name"] == "Asha Rao"

    def test_close_removes_session(self, settings, platform, gateway, user):
        platform.packages = PACKAGES
        manager = self.make_manager(settings, platform, gateway)

        snapshot = asyncio.run(manager.open_package_flow(user))
        closed = manager.close(snapshot.session_id, user)

        assert closed.closed is True
        assert closed.state == PurchaseState.IDLE
        assert manager.active_sessions == 0
